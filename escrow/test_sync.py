from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings

from escrow.chain_status import ChainOrderStatus
from escrow.models import ChainEventCursor, Order
from escrow.sync import sync_chain_order, sync_chain_orders, upsert_chain_order
from escrow.testing import FakeChainClient, make_order

COMPANION = '0x' + 'c' * 64


class UpsertChainOrderTests(TestCase):
    def test_creates_mirror_for_new_order(self):
        chain = make_order(11, status=ChainOrderStatus.PAID, created_at=1700000000000,
                           service_fee='1500', deposit='5000')

        order = upsert_chain_order(chain)

        self.assertEqual(order.source, Order.Source.CHAIN)
        self.assertEqual(order.chain_status, ChainOrderStatus.PAID)
        self.assertEqual(order.stage, 'confirmed')
        self.assertEqual(order.payment_status, 'service_fee_paid')
        self.assertEqual(order.service_fee, Decimal('15.00'))
        self.assertEqual(order.deposit, Decimal('50.00'))
        self.assertEqual(order.amount, Decimal('65.00'))
        self.assertEqual(order.created_at, 1700000000000)
        self.assertIsNone(order.companion_address)
        self.assertTrue(order.meta['publicPool'])
        self.assertEqual(order.meta['chain']['status'], ChainOrderStatus.PAID)

    def test_local_status_ahead_of_chain_is_kept(self):
        Order.objects.create(id='12', source=Order.Source.CHAIN, chain_status=ChainOrderStatus.COMPLETED,
                             meta={'chain': {'status': 3, 'disputeDeadline': '999'}})

        order = upsert_chain_order(make_order(12, status=ChainOrderStatus.DEPOSITED))

        self.assertEqual(order.chain_status, ChainOrderStatus.COMPLETED)
        self.assertEqual(order.stage, 'completed')
        self.assertEqual(order.meta['chain']['disputeDeadline'], '999')

    def test_chain_ahead_of_local_advances_mirror(self):
        Order.objects.create(id='13', source=Order.Source.CHAIN, chain_status=ChainOrderStatus.CREATED)

        order = upsert_chain_order(make_order(13, status=ChainOrderStatus.CANCELLED))

        self.assertEqual(order.chain_status, ChainOrderStatus.CANCELLED)
        self.assertEqual(order.stage, 'cancelled')

    def test_local_companion_kept_while_chain_has_none(self):
        Order.objects.create(id='14', source=Order.Source.CHAIN, companion_address=COMPANION)

        order = upsert_chain_order(make_order(14, status=ChainOrderStatus.DEPOSITED))

        self.assertEqual(order.companion_address, COMPANION)
        self.assertFalse(order.meta['publicPool'])

    @override_settings(SUI_DEFAULT_COMPANION='0x' + 'd' * 64)
    def test_default_companion_counts_as_unassigned(self):
        order = upsert_chain_order(make_order(15, companion='0x' + 'd' * 64))
        self.assertIsNone(order.companion_address)

    def test_diamond_escrow_amounts_are_not_overwritten(self):
        Order.objects.create(id='16', source=Order.Source.CHAIN, service_fee=Decimal('1.00'),
                             deposit=Decimal('2.00'), meta={'paymentMode': 'diamond_escrow'})

        order = upsert_chain_order(make_order(16, service_fee='9900', deposit='9900'))

        self.assertEqual(order.service_fee, Decimal('1.00'))
        self.assertEqual(order.deposit, Decimal('2.00'))
        self.assertEqual(order.meta['paymentMode'], 'diamond_escrow')

    def test_sync_missing_order_returns_none(self):
        self.assertIsNone(sync_chain_order('404', client=FakeChainClient()))
        self.assertFalse(Order.objects.filter(id='404').exists())


class SyncChainOrdersTests(TestCase):
    def setUp(self) -> None:
        self.chain = FakeChainClient([
            make_order(1, status=ChainOrderStatus.CREATED, created_at=1000),
            make_order(2, status=ChainOrderStatus.PAID, created_at=2000),
        ])
        Order.objects.create(id='2', source=Order.Source.CHAIN, chain_status=ChainOrderStatus.CREATED)

    def test_bootstrap_then_incremental(self):
        result = sync_chain_orders(client=self.chain)

        self.assertEqual(result['mode'], 'bootstrap')
        self.assertEqual((result['created'], result['updated'], result['failed']), (1, 1, 0))
        self.assertEqual(self.chain.calls[-1], ('fetch_orders_page', None, 'descending'))
        cursor = ChainEventCursor.objects.get(id=ChainEventCursor.ORDERS)
        self.assertEqual(cursor.cursor, self.chain.next_cursor)

        second = sync_chain_orders(client=self.chain)
        self.assertEqual(second['mode'], 'incremental')
        self.assertEqual(self.chain.calls[-1], ('fetch_orders_page', self.chain.next_cursor, 'ascending'))

    def test_partial_failure_keeps_going_and_holds_cursor(self):
        def flaky(chain):
            if chain.order_id == '1':
                raise RuntimeError('database is locked')
            return upsert_chain_order(chain)

        with patch('escrow.sync.upsert_chain_order', side_effect=flaky):
            result = sync_chain_orders(client=self.chain)

        self.assertEqual(result['failed'], 1)
        self.assertEqual(result['failures'][0]['orderId'], '1')
        self.assertEqual(result['updated'], 1)
        self.assertEqual(Order.objects.get(id='2').chain_status, ChainOrderStatus.PAID)
        self.assertFalse(ChainEventCursor.objects.exists())
