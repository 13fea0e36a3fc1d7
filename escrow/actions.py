"""
Admin actions on individual chain orders.

Each action re-reads the order from the chain, refuses illegal moves before
sending anything, and resyncs the local mirror afterwards.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from escrow.chain_clients import ChainClient, ChainOrder, TransactionResult, get_chain_client
from escrow.chain_status import CANCELABLE_STATUSES, ChainOrderStatus, is_cancelable
from escrow.errors import ChainOrderNotFound, EscrowValidationError, IllegalTransitionError
from escrow.models import Order
from escrow.sync import find_chain_order, sync_chain_order
from escrow.utils import is_numeric_id

MAX_BPS = 10000


@dataclass
class ChainActionResult:
    order_id: str
    tx: TransactionResult
    previous_status: int
    order: Optional[Order] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'orderId': self.order_id,
            'digest': self.tx.digest,
            'effects': self.tx.effects,
            'previousStatus': self.previous_status,
            'chainStatus': self.order.chain_status if self.order else None,
            'stage': self.order.stage if self.order else None,
        }


def _load_for_action(order_id: str, client: ChainClient) -> ChainOrder:
    order_id = str(order_id or '').strip()
    if not is_numeric_id(order_id):
        raise EscrowValidationError(f'Order id must be numeric: {order_id!r}')
    chain = find_chain_order(order_id, force_refresh=True, client=client)
    if chain is None:
        raise ChainOrderNotFound(order_id)
    return chain


def cancel_chain_order(order_id: str, client: Optional[ChainClient] = None) -> ChainActionResult:
    client = client or get_chain_client()
    chain = _load_for_action(order_id, client)
    if not is_cancelable(chain.status):
        raise IllegalTransitionError(
            f'Order {chain.order_id} cannot be cancelled in status {chain.status}',
            current_status=chain.status,
            allowed_statuses=[int(status) for status in CANCELABLE_STATUSES],
        )

    previous_status = chain.status
    tx = client.cancel_order(chain.order_id)
    logger.info('Chain order {} cancelled by admin: {}', chain.order_id, tx.digest)
    order = sync_chain_order(chain.order_id, client=client)
    return ChainActionResult(order_id=chain.order_id, tx=tx, previous_status=previous_status, order=order)


def resolve_chain_dispute(order_id: str, service_refund_bps: int, deposit_slash_bps: int,
                          client: Optional[ChainClient] = None) -> ChainActionResult:
    for name, value in (('serviceRefundBps', service_refund_bps), ('depositSlashBps', deposit_slash_bps)):
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_BPS:
            raise EscrowValidationError(f'{name} must be an integer between 0 and {MAX_BPS}')

    client = client or get_chain_client()
    chain = _load_for_action(order_id, client)
    if chain.status != ChainOrderStatus.DISPUTED:
        raise IllegalTransitionError(
            f'Order {chain.order_id} is not disputed (status {chain.status})',
            current_status=chain.status,
            allowed_statuses=[int(ChainOrderStatus.DISPUTED)],
        )

    previous_status = chain.status
    tx = client.resolve_dispute(chain.order_id, service_refund_bps, deposit_slash_bps)
    logger.info('Chain order {} dispute resolved (refund {} bps, slash {} bps): {}',
                chain.order_id, service_refund_bps, deposit_slash_bps, tx.digest)
    order = sync_chain_order(chain.order_id, client=client)
    return ChainActionResult(order_id=chain.order_id, tx=tx, previous_status=previous_status, order=order)
