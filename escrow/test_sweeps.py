from django.test import TestCase, override_settings

from escrow.auto_cancel import auto_cancel_chain_orders
from escrow.auto_finalize import (
    auto_complete_chain_orders,
    auto_finalize_chain_orders,
    auto_finalize_chain_orders_summary,
    pick_auto_complete,
    pick_auto_finalize,
)
from escrow.chain_status import ChainOrderStatus
from escrow.models import Order
from escrow.testing import FakeChainClient, make_order

HOUR = 3600 * 1000
NOW = 100 * HOUR


class AutoCancelSweepTests(TestCase):
    def setUp(self) -> None:
        overrides = override_settings(CHAIN_ORDER_AUTO_CANCEL_HOURS=2, CHAIN_ORDER_AUTO_CANCEL_MAX=10)
        overrides.enable()
        self.addCleanup(overrides.disable)

        self.chain = FakeChainClient([
            make_order(1, status=ChainOrderStatus.CREATED, created_at=NOW - 5 * HOUR),
            make_order(2, status=ChainOrderStatus.PAID, created_at=NOW - 3 * HOUR),
            make_order(3, status=ChainOrderStatus.CREATED, created_at=NOW - HOUR),
            make_order(4, status=ChainOrderStatus.DEPOSITED, created_at=0),
        ])

    @override_settings(CHAIN_ORDER_AUTO_CANCEL_HOURS=0)
    def test_disabled_sweep_does_nothing(self):
        result = auto_cancel_chain_orders(client=self.chain, now_ms=NOW)

        self.assertFalse(result.enabled)
        self.assertEqual(result.candidates, 0)
        self.assertEqual(self.chain.calls, [])

    def test_cancels_stale_orders_and_mirrors_them(self):
        result = auto_cancel_chain_orders(client=self.chain, now_ms=NOW)

        self.assertEqual(result.candidates, 2)
        self.assertEqual(result.canceled, 2)
        self.assertEqual(sorted(result.canceled_ids), ['1', '2'])
        self.assertEqual(Order.objects.get(id='1').chain_status, ChainOrderStatus.CANCELLED)
        self.assertEqual(Order.objects.get(id='2').stage, 'cancelled')
        self.assertEqual(self.chain.orders['3'].status, ChainOrderStatus.CREATED)

    def test_dry_run_sends_nothing(self):
        result = auto_cancel_chain_orders(dry_run=True, client=self.chain, now_ms=NOW)

        self.assertEqual(result.candidates, 2)
        self.assertEqual(result.skipped, 2)
        self.assertEqual(result.canceled, 0)
        self.assertEqual(self.chain.called('cancel_order'), [])

    def test_limit_caps_candidates(self):
        result = auto_cancel_chain_orders(limit=1, client=self.chain, now_ms=NOW)
        self.assertEqual(result.candidates, 1)
        self.assertEqual(len(self.chain.called('cancel_order')), 1)

    def test_failure_is_recorded_and_sweep_continues(self):
        self.chain.fail_on['cancel_order'] = {'1'}

        result = auto_cancel_chain_orders(client=self.chain, now_ms=NOW)

        self.assertEqual(result.canceled_ids, ['2'])
        self.assertEqual(result.failures[0]['orderId'], '1')
        self.assertIn('rejected', result.failures[0]['error'])
        self.assertEqual(result.to_dict()['canceled'], 1)


class AutoFinalizePickTests(TestCase):
    def test_complete_uses_companion_end_when_recorded(self):
        orders = [
            make_order(1, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 30 * HOUR),
            make_order(2, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 30 * HOUR),
            make_order(3, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 40 * HOUR, finish_at='5'),
            make_order(4, status=ChainOrderStatus.PAID, created_at=0),
        ]

        picked = pick_auto_complete(orders, {'2': NOW - HOUR}, NOW, 24 * HOUR, 10)

        self.assertEqual([o.order_id for o in picked], ['1'])

    def test_complete_orders_oldest_anchor_first(self):
        orders = [
            make_order(1, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 30 * HOUR),
            make_order(2, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 50 * HOUR),
        ]
        picked = pick_auto_complete(orders, {}, NOW, 24 * HOUR, 1)
        self.assertEqual([o.order_id for o in picked], ['2'])

    def test_finalize_requires_elapsed_deadline(self):
        orders = [
            make_order(1, status=ChainOrderStatus.COMPLETED, dispute_deadline=str(NOW - 10)),
            make_order(2, status=ChainOrderStatus.COMPLETED, dispute_deadline=str(NOW)),
            make_order(3, status=ChainOrderStatus.COMPLETED, dispute_deadline='0'),
            make_order(4, status=ChainOrderStatus.COMPLETED, dispute_deadline=str(NOW - 100)),
            make_order(5, status=ChainOrderStatus.DISPUTED, dispute_deadline='1'),
        ]
        picked = pick_auto_finalize(orders, NOW, 10)
        self.assertEqual([o.order_id for o in picked], ['4', '1'])


class AutoFinalizeSweepTests(TestCase):
    def setUp(self) -> None:
        overrides = override_settings(
            CHAIN_ORDER_AUTO_COMPLETE_HOURS=24,
            CHAIN_ORDER_AUTO_COMPLETE_MAX=10,
            CHAIN_ORDER_AUTO_FINALIZE_MAX=10,
        )
        overrides.enable()
        self.addCleanup(overrides.disable)

        self.chain = FakeChainClient([
            make_order(1, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 30 * HOUR),
            make_order(2, status=ChainOrderStatus.DEPOSITED, created_at=NOW - 30 * HOUR),
            make_order(3, status=ChainOrderStatus.COMPLETED, dispute_deadline=str(NOW - HOUR)),
        ])
        Order.objects.create(id='2', source=Order.Source.CHAIN, chain_status=ChainOrderStatus.DEPOSITED,
                             meta={'companionEndedAt': NOW - HOUR})

    def test_complete_phase(self):
        result = auto_complete_chain_orders(client=self.chain, now_ms=NOW)

        self.assertEqual(result.completed_ids, ['1'])
        self.assertEqual(Order.objects.get(id='1').chain_status, ChainOrderStatus.COMPLETED)

    def test_finalize_phase(self):
        result = auto_finalize_chain_orders(client=self.chain, now_ms=NOW)

        self.assertEqual(result.finalized_ids, ['3'])
        self.assertEqual(Order.objects.get(id='3').chain_status, ChainOrderStatus.RESOLVED)

    @override_settings(CHAIN_ORDER_AUTO_FINALIZE_MAX=0)
    def test_finalize_disabled(self):
        result = auto_finalize_chain_orders(client=self.chain, now_ms=NOW)
        self.assertFalse(result.enabled)
        self.assertEqual(self.chain.called('finalize_no_dispute'), [])

    def test_summary_runs_both_phases(self):
        summary = auto_finalize_chain_orders_summary(client=self.chain, now_ms=NOW)

        self.assertEqual(summary['complete']['completed'], 1)
        self.assertEqual(summary['finalize']['finalized'], 1)
        self.assertFalse(summary['dryRun'])

    def test_summary_dry_run(self):
        summary = auto_finalize_chain_orders_summary(dry_run=True, client=self.chain, now_ms=NOW)

        self.assertEqual(summary['complete']['candidates'], 1)
        self.assertEqual(summary['finalize']['candidates'], 1)
        self.assertEqual(self.chain.called('mark_completed'), [])
        self.assertEqual(self.chain.called('finalize_no_dispute'), [])
