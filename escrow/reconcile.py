"""
Chain vs local diagnostics and repairs.
"""
from collections import Counter
from typing import Any, Dict, List, Optional

from django.db.models import Q
from django.utils import timezone
from loguru import logger

from escrow.chain_clients import ChainClient, get_chain_client
from escrow.errors import EscrowValidationError
from escrow.models import Order
from escrow.sync import upsert_chain_order

DETAIL_LIMIT = 50
REPAIR_ACTIONS = ('sync_missing', 'fix_status', 'sync_all')


def _compare(client: ChainClient, force_refresh: bool) -> Dict[str, Any]:
    chain_orders = client.order_cache.fetch_all(force_refresh=force_refresh)
    chain_by_id = {order.order_id: order for order in chain_orders}
    local_rows = list(
        Order.objects.filter(Q(source=Order.Source.CHAIN) | Q(chain_status__isnull=False))
        .values('id', 'source', 'chain_status')
    )
    local_by_id = {row['id']: row for row in local_rows}

    missing_in_local: List[str] = []
    status_mismatch: List[Dict[str, Any]] = []
    needs_sync: List[Dict[str, Any]] = []
    for order in chain_orders:
        local = local_by_id.get(order.order_id)
        if local is None:
            missing_in_local.append(order.order_id)
            needs_sync.append({'orderId': order.order_id, 'reason': 'not mirrored locally'})
        elif local['chain_status'] != order.status:
            status_mismatch.append({
                'orderId': order.order_id,
                'chainStatus': order.status,
                'localStatus': local['chain_status'],
            })
            # A local status ahead of the chain is expected until the chain catches up.
            if local['chain_status'] is None or local['chain_status'] < order.status:
                needs_sync.append({
                    'orderId': order.order_id,
                    'reason': f"status chain={order.status} local={local['chain_status']}",
                })

    missing_in_chain = [
        row['id'] for row in local_rows
        if row['source'] == Order.Source.CHAIN and row['id'] not in chain_by_id
    ]
    return {
        'chain_orders': chain_orders,
        'chain_by_id': chain_by_id,
        'local_rows': local_rows,
        'missing_in_local': missing_in_local,
        'missing_in_chain': missing_in_chain,
        'status_mismatch': status_mismatch,
        'needs_sync': needs_sync,
    }


def build_reconcile_report(force_refresh: bool = False, detailed: bool = False,
                           client: Optional[ChainClient] = None) -> Dict[str, Any]:
    client = client or get_chain_client()
    compared = _compare(client, force_refresh)
    cache_stats = client.order_cache.stats()

    issues = []
    if compared['missing_in_local']:
        issues.append(f"{len(compared['missing_in_local'])} chain orders are not mirrored locally")
    if compared['missing_in_chain']:
        issues.append(f"{len(compared['missing_in_chain'])} local chain orders are missing on-chain")
    if compared['status_mismatch']:
        issues.append(f"{len(compared['status_mismatch'])} orders differ in status")

    summary = {
        'timestamp': timezone.now().isoformat(),
        'chainOrders': {
            'total': len(compared['chain_orders']),
            'byStatus': client.order_cache.order_stats()['byStatus'],
        },
        'localOrders': {
            'total': len(compared['local_rows']),
            'bySource': dict(Counter(row['source'] or 'unknown' for row in compared['local_rows'])),
        },
        'discrepancies': {
            'missingInLocal': len(compared['missing_in_local']),
            'missingInChain': len(compared['missing_in_chain']),
            'statusMismatch': len(compared['status_mismatch']),
            'needsSync': len(compared['needs_sync']),
        },
        'cache': cache_stats,
        'health': {
            'status': 'healthy' if not compared['missing_in_local'] and not compared['status_mismatch']
            else 'needs_attention',
            'issues': issues,
        },
    }
    report = {'summary': summary}
    if detailed:
        report['details'] = {
            'missingInLocal': compared['missing_in_local'][:DETAIL_LIMIT],
            'missingInChain': compared['missing_in_chain'][:DETAIL_LIMIT],
            'statusMismatch': compared['status_mismatch'][:DETAIL_LIMIT],
            'needsSync': compared['needs_sync'][:DETAIL_LIMIT],
        }
    return report


def repair_reconcile(action: str, client: Optional[ChainClient] = None) -> Dict[str, Any]:
    """Upsert the orders the report says are missing locally and/or out of date."""
    if action not in REPAIR_ACTIONS:
        raise EscrowValidationError(f'Unknown reconcile action: {action}')
    client = client or get_chain_client()
    compared = _compare(client, force_refresh=True)

    order_ids: List[str] = []
    if action in ('sync_missing', 'sync_all'):
        order_ids.extend(compared['missing_in_local'])
    if action in ('fix_status', 'sync_all'):
        order_ids.extend(item['orderId'] for item in compared['status_mismatch'])

    synced = 0
    failures = []
    for order_id in order_ids:
        try:
            upsert_chain_order(compared['chain_by_id'][order_id])
        except Exception as exc:
            logger.warning('Reconcile upsert of chain order {} failed: {}', order_id, exc)
            failures.append({'orderId': order_id, 'error': str(exc)})
            continue
        synced += 1

    logger.info('Reconcile {}: {} synced, {} failed', action, synced, len(failures))
    return {'action': action, 'total': len(order_ids), 'synced': synced, 'failures': failures}
