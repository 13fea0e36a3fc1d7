import json
import os
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.urls import reverse
from environs import Env

from escrow import views
from escrow.chain_status import ChainOrderStatus
from escrow.models import AuditLog, CronLock, LedgerCreditReceipt, Order
from escrow.testing import FakeChainClient, make_order

ADMIN_TOKEN = 'admin-token'
CRON_SECRET = 'cron-secret'
USER = '0x' + 'b' * 64


class EscrowViewTestCase(TestCase):
    def setUp(self) -> None:
        overrides = override_settings(
            APP_ENV='production',
            ADMIN_API_TOKEN=ADMIN_TOKEN,
            CRON_SECRET=CRON_SECRET,
            CRON_LOCK_TTL_MS=60000,
            CHAIN_ORDER_AUTO_CANCEL_HOURS=1,
            CHAIN_MISSING_CLEANUP_ENABLED=True,
            CHAIN_MISSING_CLEANUP_MAX_AGE_HOURS=24,
        )
        overrides.enable()
        self.addCleanup(overrides.disable)

        self.chain = FakeChainClient([
            make_order(1, status=ChainOrderStatus.CREATED, created_at=0),
            make_order(2, status=ChainOrderStatus.DEPOSITED, created_at=1000),
            make_order(3, status=ChainOrderStatus.DISPUTED, created_at=2000),
        ])
        patcher = patch('escrow.views.get_chain_client', return_value=self.chain)
        patcher.start()
        self.addCleanup(patcher.stop)
        views.overview_cache.clear()

    def admin_post(self, name, payload, **kwargs):
        return self.client.post(
            reverse(name, kwargs=kwargs or None),
            data=json.dumps(payload),
            content_type='application/json',
            HTTP_AUTHORIZATION=f'Bearer {ADMIN_TOKEN}',
        )

    def admin_get(self, name, params=None, **headers):
        return self.client.get(reverse(name), params or {},
                               HTTP_AUTHORIZATION=f'Bearer {ADMIN_TOKEN}', **headers)


class AdminAuthenticationTests(EscrowViewTestCase):
    def test_missing_token_is_unauthorized(self):
        response = self.client.get(reverse('escrow:orders'))
        self.assertEqual(response.status_code, 401)

    def test_wrong_token_is_unauthorized(self):
        response = self.client.get(reverse('escrow:orders'), HTTP_AUTHORIZATION='Bearer nope')
        self.assertEqual(response.status_code, 401)

    def test_header_token_is_accepted(self):
        response = self.client.get(reverse('escrow:orders'), HTTP_X_ADMIN_TOKEN=ADMIN_TOKEN)
        self.assertEqual(response.status_code, 200)


class ChainCancelViewTests(EscrowViewTestCase):
    def test_cancel_unknown_order_is_not_found(self):
        response = self.admin_post('escrow:chain-cancel', {'orderId': '999'})

        self.assertEqual(response.status_code, 404)
        body = response.json()
        self.assertEqual(body['error'], 'chain_order_not_found')
        self.assertEqual(len(body['troubleshooting']), 4)

    def test_cancel_deposited_order_is_rejected(self):
        response = self.admin_post('escrow:chain-cancel', {'orderId': '2'})

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['currentStatus'], 2)
        self.assertEqual(body['allowedStatuses'], [0, 1])
        self.assertEqual(self.chain.called('cancel_order'), [])

    def test_cancel_non_numeric_id_is_rejected(self):
        response = self.admin_post('escrow:chain-cancel', {'orderId': 'app-1'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_request')

    def test_cancel_created_order(self):
        response = self.admin_post('escrow:chain-cancel', {'orderId': 1, 'reason': 'stuck'})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['ok'])
        self.assertEqual(body['previousStatus'], 0)
        self.assertEqual(body['chainStatus'], ChainOrderStatus.CANCELLED)
        self.assertEqual(Order.objects.get(id='1').stage, 'cancelled')

        entry = AuditLog.objects.get(action='chain.cancel')
        self.assertEqual(entry.target_id, '1')
        self.assertEqual(entry.actor_role, AuditLog.ActorRole.ADMIN)
        self.assertEqual(entry.meta['reason'], 'stuck')

    def test_audit_ip_ignores_unparseable_forwarded_for(self):
        response = self.client.post(
            reverse('escrow:chain-cancel'),
            data=json.dumps({'orderId': '1'}),
            content_type='application/json',
            HTTP_AUTHORIZATION=f'Bearer {ADMIN_TOKEN}',
            HTTP_X_FORWARDED_FOR='unknown, 10.0.0.1',
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(AuditLog.objects.get(action='chain.cancel').ip, '127.0.0.1')

    def test_audit_ip_uses_first_forwarded_address(self):
        self.client.post(
            reverse('escrow:chain-cancel'),
            data=json.dumps({'orderId': '1'}),
            content_type='application/json',
            HTTP_AUTHORIZATION=f'Bearer {ADMIN_TOKEN}',
            HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1',
        )

        self.assertEqual(AuditLog.objects.get(action='chain.cancel').ip, '203.0.113.7')


class ChainResolveViewTests(EscrowViewTestCase):
    def test_resolve_requires_disputed_order(self):
        response = self.admin_post('escrow:chain-resolve',
                                   {'orderId': '2', 'serviceRefundBps': 5000, 'depositSlashBps': 0})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['allowedStatuses'], [4])

    def test_resolve_rejects_out_of_range_bps(self):
        response = self.admin_post('escrow:chain-resolve',
                                   {'orderId': '3', 'serviceRefundBps': 10001, 'depositSlashBps': 0})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.chain.called('resolve_dispute'), [])

    def test_resolve_disputed_order(self):
        response = self.admin_post('escrow:chain-resolve',
                                   {'orderId': '3', 'serviceRefundBps': 10000, 'depositSlashBps': 2500})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['previousStatus'], ChainOrderStatus.DISPUTED)
        self.assertEqual(self.chain.called('resolve_dispute'), [('resolve_dispute', '3', 10000, 2500)])
        self.assertTrue(AuditLog.objects.filter(action='chain.resolve_dispute').exists())


class LedgerCreditViewTests(EscrowViewTestCase):
    def test_repeated_receipt_is_reported_as_duplicate(self):
        payload = {'user': USER, 'amount': '300', 'receiptId': 'topup-1'}

        first = self.admin_post('escrow:ledger-credit', payload)
        second = self.admin_post('escrow:ledger-credit', payload)

        self.assertEqual(first.status_code, 200)
        self.assertFalse(first.json()['duplicated'])
        self.assertTrue(second.json()['duplicated'])
        self.assertEqual(second.json()['digest'], first.json()['digest'])
        self.assertEqual(len(self.chain.called('credit_balance')), 1)
        self.assertEqual(AuditLog.objects.filter(action='ledger.credit').count(), 2)

    def test_invalid_amount(self):
        response = self.admin_post('escrow:ledger-credit', {'user': USER, 'amount': '1.5', 'receiptId': 'r'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_amount')
        self.assertEqual(LedgerCreditReceipt.objects.count(), 0)


class AdminSweepViewTests(EscrowViewTestCase):
    def test_auto_cancel_dry_run(self):
        response = self.admin_post('escrow:chain-auto-cancel', {'dryRun': True})

        body = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertTrue(body['enabled'])
        self.assertEqual(body['candidates'], 1)
        self.assertEqual(body['canceled'], 0)
        self.assertEqual(self.chain.called('cancel_order'), [])
        self.assertTrue(AuditLog.objects.filter(action='chain.auto_cancel').exists())

    def test_cleanup_missing_dry_run(self):
        Order.objects.create(id='77', source=Order.Source.CHAIN, created_at=0)

        response = self.admin_post('escrow:chain-cleanup-missing', {'dryRun': True, 'maxAgeHours': 1})

        self.assertEqual(response.json()['ids'], ['77'])
        self.assertTrue(Order.objects.filter(id='77').exists())

    def test_reconcile_repair_mirrors_missing_orders(self):
        response = self.admin_post('escrow:chain-reconcile', {'action': 'sync_missing'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['synced'], 3)
        self.assertEqual(Order.objects.filter(source=Order.Source.CHAIN).count(), 3)

    def test_reconcile_report(self):
        response = self.admin_get('escrow:chain-reconcile', {'detailed': 'true'})

        body = response.json()
        self.assertEqual(body['summary']['discrepancies']['missingInLocal'], 3)
        self.assertEqual(body['summary']['health']['status'], 'needs_attention')
        self.assertEqual(len(body['details']['missingInLocal']), 3)

    def test_unknown_reconcile_action(self):
        response = self.admin_post('escrow:chain-reconcile', {'action': 'drop_everything'})
        self.assertEqual(response.status_code, 400)


class ChainOrderReadViewTests(EscrowViewTestCase):
    def test_overview_supports_conditional_get(self):
        first = self.admin_get('escrow:chain-orders')
        self.assertEqual(first.status_code, 200)
        self.assertEqual(len(first.json()['orders']), 3)
        etag = first['ETag']

        second = self.admin_get('escrow:chain-orders', HTTP_IF_NONE_MATCH=etag)
        self.assertEqual(second.status_code, 304)

    def test_order_detail(self):
        response = self.client.get(reverse('escrow:chain-order', kwargs={'order_id': '2'}),
                                   {'refresh': 'true'}, HTTP_AUTHORIZATION=f'Bearer {ADMIN_TOKEN}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['order']['status'], 2)
        self.assertIsNone(response.json()['local'])

    def test_orders_list_pages_with_cursor(self):
        for index in range(3):
            Order.objects.create(id=f'app-{index}', created_at=1000 + index)

        first = self.admin_get('escrow:orders', {'pageSize': 2}).json()
        self.assertEqual([item['id'] for item in first['items']], ['app-2', 'app-1'])
        second = self.admin_get('escrow:orders', {'pageSize': 2, 'cursor': first['nextCursor']}).json()
        self.assertEqual([item['id'] for item in second['items']], ['app-0'])
        self.assertIsNone(second['nextCursor'])


class CronViewTests(EscrowViewTestCase):
    def test_missing_secret_is_unauthorized(self):
        response = self.client.get(reverse('escrow:cron-chain-sync'))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(CronLock.objects.count(), 0)

    def test_secret_in_query_string(self):
        response = self.client.get(reverse('escrow:cron-chain-sync'), {'token': CRON_SECRET})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['total'], 3)

    def test_platform_cron_header(self):
        response = self.client.get(reverse('escrow:cron-auto-finalize'), HTTP_X_VERCEL_CRON='1')
        self.assertEqual(response.status_code, 200)
        self.assertIn('complete', response.json())

    def test_concurrent_run_is_locked(self):
        first = self.client.get(reverse('escrow:cron-auto-cancel'), HTTP_X_CRON_SECRET=CRON_SECRET)
        second = self.client.get(reverse('escrow:cron-auto-cancel'), HTTP_X_CRON_SECRET=CRON_SECRET)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['canceledIds'], ['1'])
        self.assertEqual(second.status_code, 429)
        self.assertEqual(second.json()['error'], 'locked')
        self.assertEqual(len(self.chain.called('cancel_order')), 1)

        entry = AuditLog.objects.get(action='chain.auto_cancel')
        self.assertEqual(entry.actor_role, AuditLog.ActorRole.CRON)

    @override_settings(CRON_SECRET='', APP_ENV='local')
    def test_unconfigured_secret_allowed_outside_production(self):
        response = self.client.get(reverse('escrow:cron-cleanup-missing'))
        self.assertEqual(response.status_code, 200)

    @override_settings(CRON_SECRET='')
    def test_unconfigured_secret_refused_in_production(self):
        response = self.client.get(reverse('escrow:cron-cleanup-missing'))
        self.assertEqual(response.status_code, 401)

    @override_settings(CHAIN_MISSING_CLEANUP_ENABLED=False)
    def test_cleanup_cron_respects_switch(self):
        Order.objects.create(id='88', source=Order.Source.CHAIN, created_at=0)

        response = self.client.get(reverse('escrow:cron-cleanup-missing'), HTTP_X_CRON_SECRET=CRON_SECRET)

        self.assertFalse(response.json()['enabled'])
        self.assertTrue(Order.objects.filter(id='88').exists())

    def test_cleanup_cron_deletes_old_missing_chain_orders(self):
        Order.objects.create(id='88', source=Order.Source.CHAIN, created_at=0)
        Order.objects.create(id='89', source=Order.Source.APP, created_at=0)

        response = self.client.get(reverse('escrow:cron-cleanup-missing'), HTTP_X_CRON_SECRET=CRON_SECRET)

        self.assertEqual(response.json()['deleted'], 1)
        self.assertFalse(Order.objects.filter(id='88').exists())
        self.assertTrue(Order.objects.filter(id='89').exists())


class HealthViewTests(TestCase):
    def test_health(self):
        response = self.client.get(reverse('health'))
        self.assertEqual(response.json(), {'status': 'ok'})


class EnvSettingsTests(TestCase):
    def test_settings_read_through_environs(self):
        from core import settings as project_settings

        self.assertIsInstance(project_settings.env, Env)
        self.assertIsInstance(project_settings.ALLOWED_HOSTS, list)

        with patch.dict(os.environ, {'CHAIN_ORDER_AUTO_CANCEL_HOURS': '1.5', 'ALLOWED_HOSTS': 'a.io,b.io'}):
            self.assertEqual(project_settings.env.float('CHAIN_ORDER_AUTO_CANCEL_HOURS', 0), 1.5)
            self.assertEqual(project_settings.env.list('ALLOWED_HOSTS', default=['*']), ['a.io', 'b.io'])
