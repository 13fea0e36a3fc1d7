"""
Sui chain client for the Dubhe-based escrow contracts.

Orders are read back from the Dubhe store ``SetRecord`` events for the
``order`` table; admin writes are built with ``unsafe_moveCall``, signed with
the admin Ed25519 key and executed through the fullnode JSON-RPC API.
"""
import base64
import hashlib
import itertools
import random
import re
import time
from typing import Any, Dict, List, Optional

import base58
import requests
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from hexbytes import HexBytes
from loguru import logger

from escrow.chain_clients.base import ChainClient, ChainOrder, ChainOrdersPage, TransactionResult
from escrow.chain_clients.bcs import BcsDecodeError, decode_order_from_tuple, normalize_sui_address
from escrow.errors import ChainConfigurationError, ChainRpcError, ChainTransactionError, EscrowValidationError
from escrow.utils import is_numeric_id

SUI_CLOCK_OBJECT_ID = '0x6'
ED25519_FLAG = b'\x00'
# TransactionData intent: scope, version, app id
TRANSACTION_INTENT = bytes([0, 0, 0])
MAX_EVENTS_PER_PAGE = 50
MAX_BPS = 10000

SUI_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{1,64}$')

DEFAULT_RPC_URLS = {
    'mainnet': 'https://fullnode.mainnet.sui.io:443',
    'testnet': 'https://fullnode.testnet.sui.io:443',
    'devnet': 'https://fullnode.devnet.sui.io:443',
    'localnet': 'http://127.0.0.1:9000',
}


def _strip_0x(value: str) -> str:
    return value[2:] if value.lower().startswith('0x') else value


def _normalize_dapp_key(value: str) -> str:
    return _strip_0x(value.strip()).lower()


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def load_admin_key(raw: str) -> Ed25519PrivateKey:
    """
    Load the admin signing key.

    Accepts a 32-byte seed as hex, or the Sui keystore base64 form
    (``flag || seed``).
    """
    value = (raw or '').strip()
    if not value:
        raise ChainConfigurationError('SUI_ADMIN_PRIVATE_KEY is not configured')
    if value.startswith('suiprivkey'):
        raise ChainConfigurationError(
            'Bech32 suiprivkey keys are not supported; export the key as base64 '
            'with `sui keytool convert`')

    hex_body = _strip_0x(value)
    if len(hex_body) == 64 and all(c in '0123456789abcdefABCDEF' for c in hex_body):
        seed = bytes(HexBytes(value))
    else:
        try:
            decoded = base64.b64decode(value, validate=True)
        except ValueError as exc:
            raise ChainConfigurationError(f'Admin key is neither hex nor base64: {exc}') from exc
        if len(decoded) == 33 and decoded[:1] == ED25519_FLAG:
            seed = decoded[1:]
        elif len(decoded) == 32:
            seed = decoded
        else:
            raise ChainConfigurationError(
                f'Admin key must be an Ed25519 seed, got {len(decoded)} bytes')
    return Ed25519PrivateKey.from_private_bytes(seed)


class SuiChainClient(ChainClient):
    """Client for the escrow order and ledger systems on Sui."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.network = config.get('network', 'testnet')
        self.rpc_url = config.get('rpc_url') or DEFAULT_RPC_URLS.get(self.network, '')
        self.package_id = config.get('package_id', '')
        self.dapp_hub_id = config.get('dapp_hub_id', '')
        self.gas_budget = config.get('gas_budget', 50_000_000)
        self.timeout_seconds = config.get('timeout_seconds', 30)
        self.event_limit = config.get('event_limit', 1000)
        self.retry_attempts = config.get('retry_attempts', 5)
        self.retry_base_delay = config.get('retry_base_delay_seconds', 0.8)
        self.retry_max_delay = config.get('retry_max_delay_seconds', 8.0)
        self.session = config.get('session') or requests.Session()
        self._private_key_raw = config.get('admin_private_key', '')
        self._signing_key: Optional[Ed25519PrivateKey] = None
        self._dubhe_package: Optional[str] = None
        self._request_ids = itertools.count(1)

    @property
    def chain_name(self) -> str:
        return 'sui'

    def validate_address(self, address: str) -> bool:
        """Validate Sui address format (0x-prefixed hex, at most 32 bytes)."""
        return isinstance(address, str) and bool(SUI_ADDRESS_RE.match(address.strip()))

    def normalize_address(self, address: str) -> str:
        return normalize_sui_address(address)

    @staticmethod
    def validate_digest(digest: str) -> bool:
        """Transaction digests are base58-encoded 32-byte hashes."""
        try:
            return len(base58.b58decode(digest)) == 32
        except ValueError:
            return False

    def get_explorer_url(self, digest: str) -> str:
        return f'https://suiscan.xyz/{self.network}/tx/{digest}'

    # JSON-RPC

    def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {
            'jsonrpc': '2.0',
            'id': next(self._request_ids),
            'method': method,
            'params': params,
        }
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise ChainRpcError(f'{method} request failed: {exc}') from exc

        if response.status_code == 429:
            raise ChainRpcError(f'{method}: 429 Too Many Requests', code=429)
        if response.status_code >= 400:
            raise ChainRpcError(f'{method}: HTTP {response.status_code}', code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise ChainRpcError(f'{method}: invalid JSON response') from exc

        error = body.get('error')
        if error:
            raise ChainRpcError(f"{method}: {error.get('message', error)}", code=error.get('code'))
        return body.get('result')

    def _call(self, method: str, params: List[Any]) -> Any:
        attempt = 0
        while True:
            try:
                return self._rpc(method, params)
            except ChainRpcError as exc:
                attempt += 1
                if not exc.retryable or attempt >= self.retry_attempts:
                    raise
                delay = min(self.retry_max_delay, self.retry_base_delay * attempt)
                delay += random.uniform(0, self.retry_base_delay / 2)
                logger.warning('Sui RPC {} failed (attempt {}/{}), retrying in {:.2f}s: {}',
                               method, attempt, self.retry_attempts, delay, exc.message)
                time.sleep(delay)

    def _require(self, *keys: str) -> None:
        values = {
            'rpc_url': self.rpc_url,
            'package_id': self.package_id,
            'dapp_hub_id': self.dapp_hub_id,
            'admin_private_key': self._private_key_raw,
        }
        missing = [key for key in keys if not values.get(key)]
        if missing:
            raise ChainConfigurationError(f"Missing Sui config: {', '.join(missing)}")

    # Reads

    def _dubhe_package_id(self) -> str:
        if self._dubhe_package is None:
            result = self._call('sui_getObject', [self.dapp_hub_id, {'showType': True}]) or {}
            object_type = (result.get('data') or {}).get('type') or ''
            if '::' not in object_type:
                raise ChainConfigurationError(
                    f'Cannot resolve Dubhe package from hub object {self.dapp_hub_id}')
            self._dubhe_package = object_type.split('::')[0]
        return self._dubhe_package

    def _decode_event(self, event: Dict[str, Any], target_key: str) -> Optional[ChainOrder]:
        parsed = event.get('parsedJson') or {}
        if parsed.get('table_id') != 'order':
            return None
        if _normalize_dapp_key(parsed.get('dapp_key') or '') != target_key:
            return None
        try:
            order = decode_order_from_tuple(parsed.get('key_tuple') or [], parsed.get('value_tuple') or [])
        except BcsDecodeError as exc:
            logger.warning('Skipping undecodable order record in {}: {}', event.get('id'), exc)
            return None
        if order is not None:
            order.last_updated_ms = _to_int(event.get('timestampMs'))
        return order

    def fetch_orders_page(
        self,
        cursor: Optional[Dict[str, Any]] = None,
        order: str = 'descending',
        limit: Optional[int] = None,
    ) -> ChainOrdersPage:
        self._require('rpc_url', 'package_id', 'dapp_hub_id')
        event_type = f'{self._dubhe_package_id()}::dubhe_events::Dubhe_Store_SetRecord'
        target_key = _normalize_dapp_key(f'{_strip_0x(self.package_id)}::dapp_key::DappKey')
        descending = order != 'ascending'
        remaining = limit if limit and limit > 0 else self.event_limit

        orders: Dict[str, ChainOrder] = {}
        page_cursor = cursor
        latest_cursor = None
        latest_event_ms = None
        while remaining > 0:
            page = self._call('suix_queryEvents', [
                {'MoveEventType': event_type},
                page_cursor,
                min(MAX_EVENTS_PER_PAGE, remaining),
                descending,
            ]) or {}
            events = page.get('data') or []
            if events:
                # The newest event is first when descending, last when ascending.
                if descending and latest_cursor is None:
                    latest_cursor = events[0].get('id')
                    latest_event_ms = _to_int(events[0].get('timestampMs')) or None
                elif not descending:
                    latest_cursor = events[-1].get('id') or latest_cursor
                    latest_event_ms = _to_int(events[-1].get('timestampMs')) or latest_event_ms

            for event in events:
                chain_order = self._decode_event(event, target_key)
                if chain_order is None:
                    continue
                if not descending or chain_order.order_id not in orders:
                    orders[chain_order.order_id] = chain_order

            remaining -= len(events)
            if not events or not page.get('hasNextPage'):
                break
            page_cursor = page.get('nextCursor')

        sorted_orders = sorted(orders.values(), key=lambda o: _to_int(o.created_at), reverse=True)
        logger.debug('Fetched {} Sui chain orders ({})', len(sorted_orders), order)
        return ChainOrdersPage(
            orders=sorted_orders,
            next_cursor=latest_cursor,
            latest_event_ms=latest_event_ms,
        )

    # Writes

    @property
    def signing_key(self) -> Ed25519PrivateKey:
        if self._signing_key is None:
            self._signing_key = load_admin_key(self._private_key_raw)
        return self._signing_key

    def _public_key_bytes(self) -> bytes:
        return self.signing_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    @property
    def signer_address(self) -> str:
        digest = hashlib.blake2b(ED25519_FLAG + self._public_key_bytes(), digest_size=32)
        return '0x' + digest.hexdigest()

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Serialized Sui signature: flag || signature || public key, base64."""
        digest = hashlib.blake2b(TRANSACTION_INTENT + tx_bytes, digest_size=32).digest()
        signature = self.signing_key.sign(digest)
        return base64.b64encode(ED25519_FLAG + signature + self._public_key_bytes()).decode('ascii')

    def _execute_move_call(self, module: str, function: str, arguments: List[Any]) -> TransactionResult:
        self._require('rpc_url', 'package_id', 'dapp_hub_id', 'admin_private_key')
        built = self._call('unsafe_moveCall', [
            self.signer_address,
            self.package_id,
            module,
            function,
            [],
            arguments,
            None,
            str(self.gas_budget),
            None,
        ]) or {}
        tx_bytes = built.get('txBytes')
        if not tx_bytes:
            raise ChainRpcError(f'{module}::{function}: unsafe_moveCall returned no txBytes')

        signature = self.sign_transaction(base64.b64decode(tx_bytes))
        result = self._call('sui_executeTransactionBlock', [
            tx_bytes,
            [signature],
            {'showEffects': True, 'showEvents': True},
            'WaitForLocalExecution',
        ]) or {}

        digest = result.get('digest') or ''
        if not self.validate_digest(digest):
            raise ChainTransactionError(f'{module}::{function}: malformed digest {digest!r}')
        effects = result.get('effects') or {}
        status = effects.get('status') or {}
        if status.get('status') != 'success':
            raise ChainTransactionError(
                f"{module}::{function} failed: {status.get('error', 'unknown error')}",
                digest=digest,
            )

        logger.info('Sui transaction {} executed: {}::{}', digest, module, function)
        return TransactionResult(digest=digest, effects=effects, events=result.get('events'))

    @staticmethod
    def _require_order_id(order_id: str) -> str:
        order_id = str(order_id).strip()
        if not is_numeric_id(order_id):
            raise EscrowValidationError(f'Order id must be numeric: {order_id!r}')
        return order_id

    def cancel_order(self, order_id: str) -> TransactionResult:
        order_id = self._require_order_id(order_id)
        return self._execute_move_call('order_system', 'admin_cancel_order', [self.dapp_hub_id, order_id])

    def resolve_dispute(self, order_id: str, service_refund_bps: int,
                        deposit_slash_bps: int) -> TransactionResult:
        order_id = self._require_order_id(order_id)
        for name, value in (('serviceRefundBps', service_refund_bps), ('depositSlashBps', deposit_slash_bps)):
            if not 0 <= int(value) <= MAX_BPS:
                raise EscrowValidationError(f'{name} must be between 0 and {MAX_BPS}')
        return self._execute_move_call('order_system', 'resolve_dispute', [
            self.dapp_hub_id,
            order_id,
            str(int(service_refund_bps)),
            str(int(deposit_slash_bps)),
            SUI_CLOCK_OBJECT_ID,
        ])

    def mark_completed(self, order_id: str) -> TransactionResult:
        order_id = self._require_order_id(order_id)
        return self._execute_move_call(
            'order_system', 'admin_mark_completed', [self.dapp_hub_id, order_id, SUI_CLOCK_OBJECT_ID])

    def finalize_no_dispute(self, order_id: str) -> TransactionResult:
        order_id = self._require_order_id(order_id)
        return self._execute_move_call(
            'order_system', 'finalize_no_dispute', [self.dapp_hub_id, order_id, SUI_CLOCK_OBJECT_ID])

    def credit_balance(self, user_address: str, amount: str, receipt_id: str) -> TransactionResult:
        return self._execute_move_call('ledger_system', 'credit_balance_with_receipt', [
            self.dapp_hub_id,
            self.normalize_address(user_address),
            str(amount),
            list(receipt_id.encode('utf-8')),
            SUI_CLOCK_OBJECT_ID,
        ])
