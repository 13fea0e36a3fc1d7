import unittest

from django.test import TestCase

from escrow.cleanup import LocalOrderSnapshot, cleanup_missing_chain_orders, compute_missing_chain_cleanup
from escrow.models import Order
from escrow.testing import FakeChainClient, make_order
from escrow.utils import now_ms

HOUR = 3600 * 1000
NOW = 1_700_000_000_000


def local(order_id, source='chain', created_at=0):
    return LocalOrderSnapshot(id=order_id, source=source, created_at=created_at)


class ComputeMissingCleanupTests(unittest.TestCase):
    def test_never_targets_orders_present_on_chain(self):
        chain = [make_order(1), make_order(2)]
        locals_ = [local('1'), local('2'), local('3')]

        plan = compute_missing_chain_cleanup(chain, locals_, now_ms=NOW)

        self.assertEqual([o.id for o in plan.missing], ['3'])
        self.assertEqual(plan.ids, ['3'])

    def test_non_numeric_ids_are_never_missing(self):
        locals_ = [local('app-1', source='app'), local('ord_42'), local('17')]

        plan = compute_missing_chain_cleanup([], locals_, now_ms=NOW)

        self.assertEqual(plan.ids, ['17'])

    def test_trailing_newline_is_not_a_chain_id(self):
        plan = compute_missing_chain_cleanup([], [local('3\n'), local('4')], now_ms=NOW)
        self.assertEqual(plan.ids, ['4'])

    def test_chain_only_requires_chain_source(self):
        locals_ = [local('5', source='app'), local('6', source='seed'), local('7', source='chain')]

        plan = compute_missing_chain_cleanup([], locals_, chain_only=True, now_ms=NOW)
        self.assertEqual(plan.ids, ['7'])

        everything = compute_missing_chain_cleanup([], locals_, chain_only=False, now_ms=NOW)
        self.assertEqual(everything.ids, ['5', '6', '7'])

    def test_age_floor_requires_finite_timestamp_strictly_before_cutoff(self):
        cutoff = NOW - 24 * HOUR
        locals_ = [
            local('1', created_at=cutoff - 1),
            local('2', created_at=cutoff),
            local('3', created_at=NOW),
            local('4', created_at=None),
            local('5', created_at=float('nan')),
        ]

        plan = compute_missing_chain_cleanup([], locals_, max_age_hours=24, now_ms=NOW)

        self.assertEqual(plan.cutoff, cutoff)
        self.assertEqual(plan.ids, ['1'])
        self.assertEqual(len(plan.missing), 5)

    def test_no_age_floor_means_no_cutoff(self):
        plan = compute_missing_chain_cleanup([], [local('1', created_at=NOW)], now_ms=NOW)
        self.assertIsNone(plan.cutoff)
        self.assertEqual(plan.ids, ['1'])

    def test_limit_truncates_ids_not_eligible(self):
        locals_ = [local(str(i)) for i in range(10)]

        plan = compute_missing_chain_cleanup([], locals_, max_delete=3, now_ms=NOW)

        self.assertEqual(plan.ids, ['0', '1', '2'])
        self.assertEqual(len(plan.eligible), 10)
        self.assertEqual(plan.limit, 3)

    def test_fractional_age_keeps_exact_cutoff(self):
        max_age_hours = 1 / 3600000 * 1.5
        locals_ = [local('1', created_at=NOW - 2), local('2', created_at=NOW - 1)]

        plan = compute_missing_chain_cleanup([], locals_, max_age_hours=max_age_hours, now_ms=NOW)

        self.assertAlmostEqual(plan.cutoff, NOW - 1.5, delta=0.01)
        self.assertEqual(plan.ids, ['1'])

    def test_fractional_limit_is_floored(self):
        locals_ = [local(str(i)) for i in range(5)]

        plan = compute_missing_chain_cleanup([], locals_, max_delete=2.7, now_ms=NOW)

        self.assertEqual(plan.limit, 2)
        self.assertEqual(plan.ids, ['0', '1'])

    def test_non_positive_limit_falls_back_to_default(self):
        plan = compute_missing_chain_cleanup([], [local('1')], max_delete=0, now_ms=NOW)
        self.assertEqual(plan.limit, 500)

    def test_same_inputs_produce_same_plan(self):
        chain = [make_order(2)]
        locals_ = [local('1', created_at=0), local('2'), local('3', source='app', created_at=0)]

        first = compute_missing_chain_cleanup(chain, locals_, max_age_hours=1, now_ms=NOW)
        second = compute_missing_chain_cleanup(chain, locals_, max_age_hours=1, now_ms=NOW)

        self.assertEqual(first, second)


class CleanupMissingChainOrdersTests(TestCase):
    def setUp(self) -> None:
        old = now_ms() - 48 * HOUR
        Order.objects.create(id='100', source=Order.Source.CHAIN, created_at=old)
        Order.objects.create(id='101', source=Order.Source.CHAIN, created_at=old)
        Order.objects.create(id='102', source=Order.Source.APP, created_at=old)
        Order.objects.create(id='app-9', source=Order.Source.APP, created_at=old)
        self.client_ = FakeChainClient([make_order(101)])

    def test_dry_run_deletes_nothing(self):
        result = cleanup_missing_chain_orders(max_age_hours=24, dry_run=True, client=self.client_)

        self.assertEqual(result['ids'], ['100'])
        self.assertEqual(result['deleted'], 0)
        self.assertTrue(result['dryRun'])
        self.assertEqual(Order.objects.count(), 4)

    def test_deletes_only_chain_sourced_missing_orders(self):
        result = cleanup_missing_chain_orders(max_age_hours=24, client=self.client_)

        self.assertEqual(result['deleted'], 1)
        self.assertEqual(result['missingCount'], 2)
        self.assertEqual(result['chainCount'], 1)
        self.assertFalse(Order.objects.filter(id='100').exists())
        self.assertEqual(set(Order.objects.values_list('id', flat=True)), {'101', '102', 'app-9'})

    def test_failed_chain_read_deletes_nothing(self):
        self.client_.fetch_error = RuntimeError('fullnode unreachable')

        with self.assertRaises(RuntimeError):
            cleanup_missing_chain_orders(max_age_hours=24, client=self.client_)

        self.assertEqual(Order.objects.count(), 4)
