import base64
import hashlib
import unittest
from unittest.mock import Mock, patch

import base58
import requests
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from escrow.chain_clients.bcs import decode_order_from_tuple, decode_u64, decode_vec_u8, normalize_sui_address
from escrow.chain_clients.sui_chain import SuiChainClient, load_admin_key
from escrow.errors import ChainConfigurationError, ChainRpcError, ChainTransactionError, EscrowValidationError

SEED = bytes(range(32))
PACKAGE_ID = '0x' + 'ab' * 32
HUB_ID = '0x' + 'cd' * 32
DUBHE_PACKAGE = '0x' + 'ef' * 32


def u64(value):
    return list(value.to_bytes(8, 'little'))


def address(byte):
    return [byte] * 32


def order_value_tuple(status=0, created_at=1700000000000, service_fee=1500, deposit=5000):
    return [
        address(0xaa),
        address(0x00),
        u64(1),
        u64(service_fee),
        u64(deposit),
        u64(500),
        [status],
        u64(created_at),
        u64(0),
        u64(0),
        u64(0),
        u64(0),
        [2, 0xde, 0xad],
        [0],
        address(0x00),
        u64(0),
    ]


def set_record_event(order_id, status=0, created_at=1700000000000, seq='0', timestamp_ms='1700000000500',
                     dapp_key=PACKAGE_ID + '::dapp_key::DappKey', table_id='order'):
    return {
        'id': {'txDigest': f'tx-{order_id}-{seq}', 'eventSeq': seq},
        'timestampMs': timestamp_ms,
        'parsedJson': {
            'dapp_key': dapp_key,
            'table_id': table_id,
            'key_tuple': [u64(order_id)],
            'value_tuple': order_value_tuple(status=status, created_at=created_at),
        },
    }


def rpc_response(result=None, error=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    body = {'jsonrpc': '2.0', 'id': 1}
    if error is not None:
        body['error'] = error
    else:
        body['result'] = result
    response.json.return_value = body
    return response


class FakeSession:
    """Answers JSON-RPC calls from a per-method queue of responses."""

    def __init__(self, responses):
        self.responses = {method: list(items) for method, items in responses.items()}
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        queue = self.responses[json['method']]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


def make_client(session, **overrides):
    config = {
        'network': 'testnet',
        'rpc_url': 'http://fullnode.test',
        'package_id': PACKAGE_ID,
        'dapp_hub_id': HUB_ID,
        'admin_private_key': SEED.hex(),
        'session': session,
        'retry_attempts': 3,
    }
    config.update(overrides)
    return SuiChainClient(config)


class BcsDecodingTests(unittest.TestCase):
    def test_decodes_order_record(self):
        order = decode_order_from_tuple([u64(42)], order_value_tuple(status=2))

        self.assertEqual(order.order_id, '42')
        self.assertEqual(order.status, 2)
        self.assertEqual(order.user, '0x' + 'aa' * 32)
        self.assertEqual(order.service_fee, '1500')
        self.assertEqual(order.deposit, '5000')
        self.assertEqual(order.created_at, '1700000000000')
        self.assertEqual(order.evidence_hash, '0xdead')

    def test_truncated_record_is_skipped(self):
        self.assertIsNone(decode_order_from_tuple([u64(1)], order_value_tuple()[:10]))

    def test_u64_is_little_endian(self):
        self.assertEqual(decode_u64(u64(2 ** 64 - 1)), str(2 ** 64 - 1))
        self.assertEqual(decode_u64([1, 0, 0, 0, 0, 0, 0, 0]), '1')

    def test_empty_vector(self):
        self.assertEqual(decode_vec_u8([0]), '0x')

    def test_address_normalization(self):
        self.assertEqual(normalize_sui_address('0x2'), '0x' + '0' * 63 + '2')
        self.assertEqual(normalize_sui_address('0x' + 'AB' * 32), '0x' + 'ab' * 32)
        with self.assertRaises(ValueError):
            normalize_sui_address('0x' + 'ab' * 33)


class AdminKeyTests(unittest.TestCase):
    def _public(self, key):
        return key.public_key().public_bytes_raw()

    def test_hex_and_keystore_forms_load_the_same_key(self):
        expected = self._public(Ed25519PrivateKey.from_private_bytes(SEED))
        for raw in (SEED.hex(), '0x' + SEED.hex(), base64.b64encode(b'\x00' + SEED).decode(),
                    base64.b64encode(SEED).decode()):
            self.assertEqual(self._public(load_admin_key(raw)), expected, raw)

    def test_rejects_missing_and_unsupported_keys(self):
        for raw in ('', 'suiprivkey1qxyz', base64.b64encode(b'short').decode(), 'not base64 at all!'):
            with self.assertRaises(ChainConfigurationError, msg=raw):
                load_admin_key(raw)

    def test_signer_address_is_blake2b_of_flag_and_public_key(self):
        client = make_client(FakeSession({}))
        public = self._public(Ed25519PrivateKey.from_private_bytes(SEED))
        expected = '0x' + hashlib.blake2b(b'\x00' + public, digest_size=32).hexdigest()
        self.assertEqual(client.signer_address, expected)


class SuiAddressTests(unittest.TestCase):
    def test_validate_address(self):
        client = make_client(FakeSession({}))
        self.assertTrue(client.validate_address('0x1'))
        self.assertTrue(client.validate_address('0x' + 'f' * 64))
        self.assertFalse(client.validate_address('0x' + 'f' * 65))
        self.assertFalse(client.validate_address('abc'))
        self.assertFalse(client.validate_address('0xzz'))

    def test_validate_digest(self):
        self.assertTrue(SuiChainClient.validate_digest(base58.b58encode(bytes(32)).decode()))
        self.assertFalse(SuiChainClient.validate_digest(base58.b58encode(bytes(16)).decode()))
        self.assertFalse(SuiChainClient.validate_digest('0OIl'))


class SuiOrderReadTests(unittest.TestCase):
    def _hub_object(self):
        return rpc_response({'data': {'type': f'{DUBHE_PACKAGE}::dapp_service::DappHub'}})

    def test_descending_read_keeps_latest_record_per_order(self):
        events = [
            set_record_event(7, status=1, created_at=1000, seq='3'),
            set_record_event(8, status=0, created_at=2000, seq='2'),
            set_record_event(7, status=0, created_at=1000, seq='1'),
            set_record_event(9, table_id='companion', seq='0'),
            set_record_event(10, dapp_key='0x1::dapp_key::DappKey', seq='0'),
        ]
        session = FakeSession({
            'sui_getObject': [self._hub_object()],
            'suix_queryEvents': [rpc_response({'data': events, 'hasNextPage': False, 'nextCursor': None})],
        })
        client = make_client(session)

        page = client.fetch_orders_page()

        self.assertEqual([o.order_id for o in page.orders], ['8', '7'])
        self.assertEqual(page.orders[1].status, 1)
        self.assertEqual(page.next_cursor, events[0]['id'])
        self.assertEqual(page.latest_event_ms, 1700000000500)
        query = [r for r in session.requests if r['method'] == 'suix_queryEvents'][0]
        self.assertEqual(query['params'][0],
                         {'MoveEventType': f'{DUBHE_PACKAGE}::dubhe_events::Dubhe_Store_SetRecord'})
        self.assertTrue(query['params'][3])

    def test_ascending_read_resumes_from_cursor(self):
        cursor = {'txDigest': 'old', 'eventSeq': '5'}
        events = [
            set_record_event(7, status=0, seq='6'),
            set_record_event(7, status=2, seq='7'),
        ]
        session = FakeSession({
            'sui_getObject': [self._hub_object()],
            'suix_queryEvents': [rpc_response({'data': events, 'hasNextPage': False})],
        })
        client = make_client(session)

        page = client.fetch_orders_page(cursor=cursor, order='ascending')

        self.assertEqual(page.orders[0].status, 2)
        self.assertEqual(page.next_cursor, events[-1]['id'])
        query = [r for r in session.requests if r['method'] == 'suix_queryEvents'][0]
        self.assertEqual(query['params'][1], cursor)
        self.assertFalse(query['params'][3])

    def test_follows_pages_until_exhausted(self):
        session = FakeSession({
            'sui_getObject': [self._hub_object()],
            'suix_queryEvents': [
                rpc_response({'data': [set_record_event(1, seq='1')], 'hasNextPage': True,
                              'nextCursor': {'txDigest': 'a', 'eventSeq': '1'}}),
                rpc_response({'data': [set_record_event(2, seq='0')], 'hasNextPage': False}),
            ],
        })

        page = make_client(session).fetch_orders_page()

        self.assertEqual({o.order_id for o in page.orders}, {'1', '2'})

    def test_missing_configuration_is_reported(self):
        client = make_client(FakeSession({}), package_id='')
        with self.assertRaises(ChainConfigurationError):
            client.fetch_orders_page()


class SuiRpcTests(unittest.TestCase):
    @patch('escrow.chain_clients.sui_chain.time.sleep')
    def test_retries_rate_limited_calls(self, sleep):
        session = FakeSession({
            'sui_getObject': [
                rpc_response(status_code=429),
                rpc_response({'data': {'type': f'{DUBHE_PACKAGE}::x::Y'}}),
            ],
        })
        client = make_client(session)

        self.assertEqual(client._dubhe_package_id(), DUBHE_PACKAGE)
        self.assertEqual(len(session.requests), 2)
        self.assertEqual(sleep.call_count, 1)

    @patch('escrow.chain_clients.sui_chain.time.sleep')
    def test_gives_up_after_retry_budget(self, sleep):
        session = FakeSession({'sui_getObject': [requests.ConnectionError('connection reset')]})
        client = make_client(session)

        with self.assertRaises(ChainRpcError):
            client._dubhe_package_id()
        self.assertEqual(len(session.requests), 3)
        self.assertEqual(sleep.call_count, 2)

    @patch('escrow.chain_clients.sui_chain.time.sleep')
    def test_does_not_retry_permanent_errors(self, sleep):
        session = FakeSession({
            'sui_getObject': [rpc_response(error={'code': -32602, 'message': 'Invalid params'})],
        })
        with self.assertRaises(ChainRpcError):
            make_client(session)._dubhe_package_id()
        self.assertEqual(len(session.requests), 1)
        sleep.assert_not_called()


class SuiTransactionTests(unittest.TestCase):
    def _session(self, status='success'):
        digest = base58.b58encode(bytes(range(32))).decode()
        return FakeSession({
            'unsafe_moveCall': [rpc_response({'txBytes': base64.b64encode(b'tx-bytes').decode()})],
            'sui_executeTransactionBlock': [rpc_response({
                'digest': digest,
                'effects': {'status': {'status': status, 'error': 'MoveAbort(1)'}},
                'events': [],
            })],
        })

    def test_cancel_builds_signs_and_executes(self):
        session = self._session()
        client = make_client(session)

        result = client.cancel_order('42')

        build, execute = session.requests
        self.assertEqual(build['params'][1:4], [PACKAGE_ID, 'order_system', 'admin_cancel_order'])
        self.assertEqual(build['params'][5], [HUB_ID, '42'])
        self.assertEqual(execute['params'][3], 'WaitForLocalExecution')

        serialized = base64.b64decode(execute['params'][1][0])
        self.assertEqual(serialized[:1], b'\x00')
        signature, public = serialized[1:65], serialized[65:]
        intent_digest = hashlib.blake2b(bytes([0, 0, 0]) + b'tx-bytes', digest_size=32).digest()
        Ed25519PrivateKey.from_private_bytes(SEED).public_key().verify(signature, intent_digest)
        self.assertEqual(len(public), 32)
        self.assertTrue(client.validate_digest(result.digest))

    def test_failed_effects_raise(self):
        with self.assertRaises(ChainTransactionError) as ctx:
            make_client(self._session(status='failure')).mark_completed('42')
        self.assertIn('MoveAbort', str(ctx.exception))
        self.assertIsNotNone(ctx.exception.digest)

    def test_credit_passes_receipt_bytes(self):
        session = self._session()
        make_client(session).credit_balance('0x2', '100', 'rcpt')

        arguments = session.requests[0]['params'][5]
        self.assertEqual(arguments[1], '0x' + '0' * 63 + '2')
        self.assertEqual(arguments[2], '100')
        self.assertEqual(arguments[3], list(b'rcpt'))
        self.assertEqual(arguments[4], '0x6')

    def test_resolve_checks_basis_points(self):
        with self.assertRaises(EscrowValidationError):
            make_client(self._session()).resolve_dispute('42', 10001, 0)

    def test_non_numeric_order_id_is_rejected_before_rpc(self):
        session = self._session()
        with self.assertRaises(EscrowValidationError):
            make_client(session).cancel_order('app-1')
        self.assertEqual(session.requests, [])

    def test_missing_admin_key_is_configuration_error(self):
        with self.assertRaises(ChainConfigurationError):
            make_client(self._session(), admin_private_key='').finalize_no_dispute('42')
