"""
On-chain order status model.

Pure predicates over chain order snapshots. Nothing here touches the database
or the network.
"""
import math
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class ChainOrderStatus(IntEnum):
    CREATED = 0
    PAID = 1
    DEPOSITED = 2
    COMPLETED = 3
    DISPUTED = 4
    RESOLVED = 5
    CANCELLED = 6


CANCELABLE_STATUSES = (ChainOrderStatus.CREATED, ChainOrderStatus.PAID)
TERMINAL_STATUSES = (
    ChainOrderStatus.COMPLETED,
    ChainOrderStatus.RESOLVED,
    ChainOrderStatus.CANCELLED,
)

# Forward moves only, plus the two dispute outcomes.
_TRANSITIONS = {
    ChainOrderStatus.CREATED: {ChainOrderStatus.PAID, ChainOrderStatus.CANCELLED},
    ChainOrderStatus.PAID: {ChainOrderStatus.DEPOSITED, ChainOrderStatus.CANCELLED},
    ChainOrderStatus.DEPOSITED: {ChainOrderStatus.COMPLETED, ChainOrderStatus.DISPUTED},
    ChainOrderStatus.DISPUTED: {ChainOrderStatus.RESOLVED, ChainOrderStatus.CANCELLED},
    ChainOrderStatus.COMPLETED: set(),
    ChainOrderStatus.RESOLVED: set(),
    ChainOrderStatus.CANCELLED: set(),
}


class Stage:
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


def parse_chain_timestamp(value: Any) -> Optional[int]:
    """Parse a u64 millisecond string. Returns None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def is_cancelable(status: Optional[int]) -> bool:
    return status in CANCELABLE_STATUSES


def is_auto_cancelable(order, now_ms: int, threshold_ms: int) -> bool:
    if now_ms <= 0 or threshold_ms <= 0:
        return False
    if not is_cancelable(order.status):
        return False
    created_at = parse_chain_timestamp(order.created_at)
    if created_at is None:
        return False
    return now_ms - created_at > threshold_ms


def pick_auto_cancelable(orders: Iterable, now_ms: int, threshold_ms: int,
                         limit: Optional[int] = None) -> List:
    """Auto-cancelable orders in input order, truncated to ``limit``."""
    picked = [o for o in orders if is_auto_cancelable(o, now_ms, threshold_ms)]
    if limit is not None and limit > 0:
        return picked[:limit]
    return picked


def can_transition(current: int, target: int) -> bool:
    try:
        current_status = ChainOrderStatus(current)
        target_status = ChainOrderStatus(target)
    except ValueError:
        return False
    return target_status in _TRANSITIONS[current_status]


def map_stage(status: int) -> str:
    if status == ChainOrderStatus.CANCELLED:
        return Stage.CANCELLED
    if status in (ChainOrderStatus.COMPLETED, ChainOrderStatus.RESOLVED):
        return Stage.COMPLETED
    if status >= ChainOrderStatus.DEPOSITED:
        return Stage.IN_PROGRESS
    if status == ChainOrderStatus.PAID:
        return Stage.CONFIRMED
    return Stage.PENDING


def map_payment_status(status: int) -> str:
    return {
        ChainOrderStatus.CREATED: 'unpaid',
        ChainOrderStatus.PAID: 'service_fee_paid',
        ChainOrderStatus.DEPOSITED: 'deposit_locked',
        ChainOrderStatus.COMPLETED: 'awaiting_settlement',
        ChainOrderStatus.DISPUTED: 'disputed',
        ChainOrderStatus.RESOLVED: 'settled',
        ChainOrderStatus.CANCELLED: 'cancelled',
    }.get(status, 'unknown')


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def get_local_chain_status(chain_status: Any = None,
                           meta: Optional[Mapping[str, Any]] = None) -> Optional[int]:
    """Cached chain status of a local order, falling back to ``meta.chain.status``."""
    status = _as_status(chain_status)
    if status is not None:
        return status
    chain_meta = (meta or {}).get('chain')
    if isinstance(chain_meta, Mapping):
        return _as_status(chain_meta.get('status'))
    return None


def resolve_effective_chain_status(local_status: Optional[int], chain_status: int) -> int:
    """A local status ahead of the chain wins; the chain may lag behind local writes."""
    if local_status is not None and local_status > chain_status:
        return local_status
    return chain_status


def merge_chain_status(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def derive_order_status(chain_status: Optional[int], fallback: Dict[str, str]) -> Dict[str, str]:
    """Stage and payment status for a local order, given its chain status."""
    if chain_status is None:
        return dict(fallback)
    return {
        'stage': map_stage(chain_status),
        'payment_status': map_payment_status(chain_status),
    }
