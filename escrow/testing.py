"""
In-memory chain client for tests.
"""
import re
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from escrow.chain_clients.base import ChainClient, ChainOrder, ChainOrdersPage, TransactionResult
from escrow.chain_clients.bcs import normalize_sui_address
from escrow.chain_status import ChainOrderStatus
from escrow.errors import ChainRpcError

ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{1,64}$')


def make_order(order_id, status=ChainOrderStatus.CREATED, created_at=0, **fields) -> ChainOrder:
    fields.setdefault('user', '0x' + 'a' * 64)
    fields.setdefault('companion', '0x' + '0' * 64)
    return ChainOrder(order_id=str(order_id), status=int(status), created_at=str(created_at), **fields)


class FakeChainClient(ChainClient):
    """
    Holds orders in memory and applies admin writes the way the escrow
    contract would. ``fail_on`` maps a method name to the order ids (or
    receipt ids) whose calls should raise.
    """

    chain_name = 'sui'

    def __init__(self, orders: Iterable[ChainOrder] = (), config: Optional[Dict[str, Any]] = None):
        super().__init__(config or {'cache_ttl_ms': 0, 'max_cache_age_ms': 0})
        self.orders: Dict[str, ChainOrder] = {order.order_id: order for order in orders}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, set] = {}
        self.fetch_error: Optional[Exception] = None
        self.next_cursor: Optional[Dict[str, Any]] = {'txDigest': 'cursor-digest', 'eventSeq': '0'}
        self.latest_event_ms: Optional[int] = None
        self._tx_count = 0

    def add(self, *orders: ChainOrder) -> None:
        for order in orders:
            self.orders[order.order_id] = order

    def fetch_orders_page(self, cursor=None, order='descending', limit=None) -> ChainOrdersPage:
        self.calls.append(('fetch_orders_page', cursor, order))
        if self.fetch_error is not None:
            raise self.fetch_error
        orders = sorted(self.orders.values(), key=lambda item: int(item.created_at or 0), reverse=True)
        return ChainOrdersPage(orders=orders, next_cursor=self.next_cursor,
                               latest_event_ms=self.latest_event_ms)

    def _transact(self, method: str, key: str, *args) -> TransactionResult:
        self.calls.append((method, key) + args)
        if key in self.fail_on.get(method, set()):
            raise ChainRpcError(f'{method} rejected for {key}')
        self._tx_count += 1
        return TransactionResult(digest=f'digest-{self._tx_count}', effects={'status': {'status': 'success'}})

    def _set_status(self, order_id: str, status: ChainOrderStatus) -> None:
        if order_id in self.orders:
            self.orders[order_id] = replace(self.orders[order_id], status=int(status))

    def cancel_order(self, order_id):
        tx = self._transact('cancel_order', order_id)
        self._set_status(order_id, ChainOrderStatus.CANCELLED)
        return tx

    def resolve_dispute(self, order_id, service_refund_bps, deposit_slash_bps):
        tx = self._transact('resolve_dispute', order_id, service_refund_bps, deposit_slash_bps)
        self._set_status(order_id, ChainOrderStatus.RESOLVED)
        return tx

    def mark_completed(self, order_id):
        tx = self._transact('mark_completed', order_id)
        self._set_status(order_id, ChainOrderStatus.COMPLETED)
        return tx

    def finalize_no_dispute(self, order_id):
        tx = self._transact('finalize_no_dispute', order_id)
        self._set_status(order_id, ChainOrderStatus.RESOLVED)
        return tx

    def credit_balance(self, user_address, amount, receipt_id):
        return self._transact('credit_balance', receipt_id, user_address, amount)

    def validate_address(self, address):
        return bool(ADDRESS_RE.match(address or ''))

    def normalize_address(self, address):
        return normalize_sui_address(address)

    def called(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]
