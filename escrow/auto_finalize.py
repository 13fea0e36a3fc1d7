"""
Auto-finalize sweep.

Two phases run back to back: deposited orders whose service window has
elapsed are marked completed, then completed orders whose dispute window has
closed are finalized so the escrow is released.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.db.models import Q
from loguru import logger

from escrow.chain_clients import ChainClient, ChainOrder, get_chain_client
from escrow.chain_status import ChainOrderStatus, parse_chain_timestamp
from escrow.conf import get_auto_complete_config, get_auto_finalize_config
from escrow.models import Order
from escrow.sync import sync_chain_order
from escrow.utils import now_ms as current_ms


@dataclass
class AutoCompleteResult:
    enabled: bool
    hours: float
    threshold_ms: int
    total: int = 0
    candidates: int = 0
    completed: int = 0
    skipped: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    completed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'hours': self.hours,
            'thresholdMs': self.threshold_ms,
            'total': self.total,
            'candidates': self.candidates,
            'completed': self.completed,
            'skipped': self.skipped,
            'failures': self.failures,
            'completedIds': self.completed_ids,
        }


@dataclass
class AutoFinalizeResult:
    enabled: bool
    total: int = 0
    candidates: int = 0
    finalized: int = 0
    skipped: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    finalized_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'total': self.total,
            'candidates': self.candidates,
            'finalized': self.finalized,
            'skipped': self.skipped,
            'failures': self.failures,
            'finalizedIds': self.finalized_ids,
        }


def _companion_ended_at_map() -> Dict[str, int]:
    """Local record of when the companion ended service, keyed by chain order id."""
    ended = {}
    rows = Order.objects.filter(
        Q(source=Order.Source.CHAIN) | Q(chain_status__isnull=False)
    ).values_list('id', 'meta')
    for order_id, meta in rows:
        value = parse_chain_timestamp((meta or {}).get('companionEndedAt'))
        if value and value > 0:
            ended[order_id] = value
    return ended


def pick_auto_complete(orders: List[ChainOrder], ended_at: Dict[str, int],
                       now_ms: int, threshold_ms: int, limit: int) -> List[ChainOrder]:
    """
    Deposited, unfinished orders whose service window has elapsed.

    The window starts when the companion ended service if that was recorded
    locally, otherwise at on-chain creation. Oldest anchor first.
    """
    anchors = {}
    for order in orders:
        if order.status != ChainOrderStatus.DEPOSITED:
            continue
        if (parse_chain_timestamp(order.finish_at) or 0) > 0:
            continue
        anchor = ended_at.get(order.order_id) or parse_chain_timestamp(order.created_at)
        if anchor is None:
            continue
        if now_ms - anchor > threshold_ms:
            anchors[order.order_id] = anchor
    picked = [order for order in orders if order.order_id in anchors]
    picked.sort(key=lambda order: anchors[order.order_id])
    return picked[:limit]


def pick_auto_finalize(orders: List[ChainOrder], now_ms: int, limit: int) -> List[ChainOrder]:
    """Completed orders past their dispute deadline, earliest deadline first."""
    picked = []
    for order in orders:
        if order.status != ChainOrderStatus.COMPLETED:
            continue
        deadline = parse_chain_timestamp(order.dispute_deadline) or 0
        if deadline > 0 and now_ms > deadline:
            picked.append((deadline, order))
    picked.sort(key=lambda item: item[0])
    return [order for _, order in picked[:limit]]


def auto_complete_chain_orders(dry_run: bool = False, limit: Optional[int] = None,
                               client: Optional[ChainClient] = None,
                               now_ms: Optional[int] = None) -> AutoCompleteResult:
    config = get_auto_complete_config()
    result = AutoCompleteResult(enabled=config.enabled, hours=config.hours,
                                threshold_ms=config.threshold_ms)
    if not config.enabled or config.threshold_ms <= 0:
        result.enabled = False
        return result

    client = client or get_chain_client()
    now = now_ms or current_ms()
    orders = client.fetch_orders()
    max_per_run = limit if limit and limit > 0 else config.max_per_run
    targets = pick_auto_complete(orders, _companion_ended_at_map(), now,
                                 config.threshold_ms, max_per_run)
    result.total = len(orders)
    result.candidates = len(targets)

    if dry_run:
        result.skipped = len(targets)
        return result

    for order in targets:
        try:
            client.mark_completed(order.order_id)
            sync_chain_order(order.order_id, client=client)
        except Exception as exc:
            logger.warning('Auto-complete of chain order {} failed: {}', order.order_id, exc)
            result.failures.append({'orderId': order.order_id, 'error': str(exc) or 'mark completed failed'})
            continue
        result.completed += 1
        result.completed_ids.append(order.order_id)
    return result


def auto_finalize_chain_orders(dry_run: bool = False, limit: Optional[int] = None,
                               client: Optional[ChainClient] = None,
                               now_ms: Optional[int] = None) -> AutoFinalizeResult:
    config = get_auto_finalize_config()
    result = AutoFinalizeResult(enabled=config.enabled)
    if not config.enabled:
        return result

    client = client or get_chain_client()
    now = now_ms or current_ms()
    orders = client.fetch_orders()
    max_per_run = limit if limit and limit > 0 else config.max_per_run
    targets = pick_auto_finalize(orders, now, max_per_run)
    result.total = len(orders)
    result.candidates = len(targets)

    if dry_run:
        result.skipped = len(targets)
        return result

    for order in targets:
        try:
            client.finalize_no_dispute(order.order_id)
            sync_chain_order(order.order_id, client=client)
        except Exception as exc:
            logger.warning('Auto-finalize of chain order {} failed: {}', order.order_id, exc)
            result.failures.append({'orderId': order.order_id, 'error': str(exc) or 'finalize failed'})
            continue
        result.finalized += 1
        result.finalized_ids.append(order.order_id)
    return result


def auto_finalize_chain_orders_summary(dry_run: bool = False,
                                       complete_limit: Optional[int] = None,
                                       finalize_limit: Optional[int] = None,
                                       client: Optional[ChainClient] = None,
                                       now_ms: Optional[int] = None) -> Dict[str, Any]:
    """
    Run the complete phase, then the finalize phase on a fresh snapshot.

    Orders completed by the first phase still have an open dispute window, so
    the second phase does not pick them up in the same run.
    """
    complete = auto_complete_chain_orders(dry_run=dry_run, limit=complete_limit,
                                          client=client, now_ms=now_ms)
    finalize = auto_finalize_chain_orders(dry_run=dry_run, limit=finalize_limit,
                                          client=client, now_ms=now_ms)
    logger.info('Auto-finalize sweep: {} completed, {} finalized',
                complete.completed, finalize.finalized)
    return {
        'complete': complete.to_dict(),
        'finalize': finalize.to_dict(),
        'dryRun': dry_run,
    }
