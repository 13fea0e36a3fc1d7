"""
Detection and removal of local orders whose on-chain counterpart is gone.

``compute_missing_chain_cleanup`` is pure and deterministic so that dry-run
previews and the destructive sweep share the same plan.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, List, NamedTuple, Optional

from django.db import transaction
from loguru import logger

from escrow.chain_clients import get_chain_client
from escrow.conf import HOUR_MS
from escrow.models import Order
from escrow.utils import is_numeric_id, now_ms as current_ms

DEFAULT_MAX_DELETE = 500


class LocalOrderSnapshot(NamedTuple):
    id: str
    source: str
    created_at: Any


@dataclass
class MissingCleanupPlan:
    missing: List[LocalOrderSnapshot] = field(default_factory=list)
    eligible: List[LocalOrderSnapshot] = field(default_factory=list)
    ids: List[str] = field(default_factory=list)
    cutoff: Optional[float] = None
    limit: int = DEFAULT_MAX_DELETE


def _is_finite(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def compute_missing_chain_cleanup(
    chain_orders: Iterable,
    local_orders: Iterable[LocalOrderSnapshot],
    max_age_hours: float = 0,
    max_delete: int = DEFAULT_MAX_DELETE,
    now_ms: Optional[int] = None,
    chain_only: bool = False,
) -> MissingCleanupPlan:
    now = current_ms() if now_ms is None else now_ms
    chain_ids = {str(order.order_id) for order in chain_orders}

    missing = [
        order for order in local_orders
        if is_numeric_id(order.id) and order.id not in chain_ids
    ]

    cutoff = None
    if max_age_hours and max_age_hours > 0:
        cutoff = now - max_age_hours * HOUR_MS
        eligible = [
            order for order in missing
            if (not chain_only or order.source == 'chain')
            and _is_finite(order.created_at)
            and order.created_at < cutoff
        ]
    elif chain_only:
        eligible = [order for order in missing if order.source == 'chain']
    else:
        eligible = list(missing)

    limit = math.floor(max_delete) if _is_finite(max_delete) and max_delete > 0 else DEFAULT_MAX_DELETE
    ids = [order.id for order in eligible[:limit]]
    return MissingCleanupPlan(
        missing=missing, eligible=eligible, ids=ids, cutoff=cutoff, limit=limit)


def cleanup_missing_chain_orders(max_age_hours: float = 0,
                                 max_delete: int = DEFAULT_MAX_DELETE,
                                 chain_only: bool = True,
                                 dry_run: bool = False,
                                 client=None) -> dict:
    """
    Delete local mirror rows whose chain order no longer exists.

    The chain snapshot is read fresh; a failed read propagates so that an
    unreachable fullnode never looks like an empty chain.
    """
    client = client or get_chain_client()
    chain_orders = client.fetch_orders()
    local_orders = [
        LocalOrderSnapshot(id=row['id'], source=row['source'], created_at=row['created_at'])
        for row in Order.objects.values('id', 'source', 'created_at')
    ]
    plan = compute_missing_chain_cleanup(
        chain_orders,
        local_orders,
        max_age_hours=max_age_hours,
        max_delete=max_delete,
        chain_only=chain_only,
    )

    deleted = 0
    if plan.ids and not dry_run:
        with transaction.atomic():
            deleted, _ = Order.objects.filter(id__in=plan.ids).delete()
        logger.info('Deleted {} local orders missing on-chain: {}', deleted, plan.ids)

    return {
        'chainCount': len(chain_orders),
        'localCount': len(local_orders),
        'missingCount': len(plan.missing),
        'eligibleCount': len(plan.eligible),
        'cutoff': plan.cutoff,
        'limit': plan.limit,
        'ids': plan.ids,
        'deleted': deleted,
        'dryRun': dry_run,
    }
