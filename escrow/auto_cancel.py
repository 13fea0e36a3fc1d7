"""
Auto-cancel sweep for stale orders that never reached the deposit stage.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from escrow.chain_clients import ChainClient, get_chain_client
from escrow.chain_status import is_auto_cancelable, pick_auto_cancelable
from escrow.conf import get_auto_cancel_config
from escrow.sync import sync_chain_order
from escrow.utils import now_ms as current_ms


@dataclass
class AutoCancelResult:
    enabled: bool
    hours: float
    threshold_ms: int
    total: int = 0
    candidates: int = 0
    canceled: int = 0
    skipped: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    canceled_ids: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'hours': self.hours,
            'thresholdMs': self.threshold_ms,
            'total': self.total,
            'candidates': self.candidates,
            'canceled': self.canceled,
            'skipped': self.skipped,
            'failures': self.failures,
            'canceledIds': self.canceled_ids,
            'dryRun': self.dry_run,
        }


def auto_cancel_chain_orders(dry_run: bool = False, limit: Optional[int] = None,
                             client: Optional[ChainClient] = None,
                             now_ms: Optional[int] = None) -> AutoCancelResult:
    """
    Cancel CREATED/PAID orders older than the configured threshold.

    Candidates are processed one at a time; a failed cancellation is recorded
    and left for the next scheduled run.
    """
    config = get_auto_cancel_config()
    result = AutoCancelResult(
        enabled=config.enabled,
        hours=config.hours,
        threshold_ms=config.threshold_ms,
        dry_run=dry_run,
    )
    if not config.enabled or config.threshold_ms <= 0:
        result.enabled = False
        return result

    client = client or get_chain_client()
    now = now_ms or current_ms()
    orders = client.fetch_orders()
    max_per_run = limit if limit and limit > 0 else config.max_per_run
    targets = pick_auto_cancelable(orders, now, config.threshold_ms, max_per_run)
    result.total = len(orders)
    result.candidates = len(targets)

    if dry_run:
        result.skipped = len(targets)
        return result

    for order in targets:
        if not is_auto_cancelable(order, now, config.threshold_ms):
            result.skipped += 1
            continue
        try:
            client.cancel_order(order.order_id)
            sync_chain_order(order.order_id, client=client)
        except Exception as exc:
            logger.warning('Auto-cancel of chain order {} failed: {}', order.order_id, exc)
            result.failures.append({'orderId': order.order_id, 'error': str(exc) or 'cancel failed'})
            continue
        result.canceled += 1
        result.canceled_ids.append(order.order_id)

    logger.info('Auto-cancel sweep: {} candidates, {} canceled, {} failed',
                result.candidates, result.canceled, len(result.failures))
    return result
