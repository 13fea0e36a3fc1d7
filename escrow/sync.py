"""
Reconciliation of the local order mirror with on-chain escrow orders.
"""
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from loguru import logger

from escrow.chain_clients import ChainClient, ChainOrder, get_chain_client
from escrow.chain_clients.bcs import normalize_sui_address
from escrow.chain_status import (
    derive_order_status,
    get_local_chain_status,
    parse_chain_timestamp,
    resolve_effective_chain_status,
)
from escrow.models import ChainEventCursor, Order
from escrow.utils import fen_to_cny, now_ms

ZERO_ADDRESS = '0x' + '0' * 64


def _normalize_companion(address: Optional[str]) -> Optional[str]:
    """Unassigned companions (zero or the configured default) become None."""
    if not address:
        return None
    try:
        normalized = normalize_sui_address(address)
    except ValueError:
        return None
    if normalized == ZERO_ADDRESS:
        return None
    default_raw = getattr(settings, 'SUI_DEFAULT_COMPANION', '')
    if default_raw:
        try:
            if normalize_sui_address(default_raw) == normalized:
                return None
        except ValueError:
            logger.warning('SUI_DEFAULT_COMPANION is not a valid address: {}', default_raw)
    return normalized


def _chain_meta(chain: ChainOrder) -> Dict[str, Any]:
    return {
        'status': chain.status,
        'disputeDeadline': chain.dispute_deadline,
        'lastUpdatedMs': chain.last_updated_ms,
        'ruleSetId': chain.rule_set_id,
        'evidenceHash': chain.evidence_hash,
    }


def upsert_chain_order(chain: ChainOrder) -> Order:
    """
    Merge one chain order into the local mirror.

    The stored status never moves backwards: a local status ahead of the
    observed chain status is kept together with the chain metadata recorded
    when it was reached.
    """
    with transaction.atomic():
        existing = Order.objects.select_for_update().filter(id=chain.order_id).first()

        service_fee = fen_to_cny(chain.service_fee) or Decimal('0.00')
        deposit = fen_to_cny(chain.deposit) or Decimal('0.00')

        local_status = None
        existing_meta: Dict[str, Any] = {}
        if existing is not None:
            existing_meta = dict(existing.meta or {})
            local_status = get_local_chain_status(existing.chain_status, existing_meta)
        effective_status = resolve_effective_chain_status(local_status, chain.status)

        meta = dict(existing_meta)
        if effective_status > chain.status:
            meta['chain'] = {**(existing_meta.get('chain') or {}), 'status': effective_status}
        else:
            meta['chain'] = _chain_meta(chain)

        companion = _normalize_companion(chain.companion)
        local_companion = _normalize_companion(existing.companion_address) if existing else None
        meta['publicPool'] = companion is None and local_companion is None

        status_fields = derive_order_status(effective_status, {})

        if existing is not None:
            existing.user_address = chain.user
            existing.chain_status = effective_status
            existing.stage = status_fields['stage']
            existing.payment_status = status_fields['payment_status']
            existing.meta = meta
            # Keep a locally assigned companion while the chain still shows none.
            if companion is not None or local_companion is None:
                existing.companion_address = companion
            if existing_meta.get('paymentMode') != 'diamond_escrow':
                existing.service_fee = service_fee
                existing.deposit = deposit
            existing.save()
            return existing

        order = Order(
            id=chain.order_id,
            source=Order.Source.CHAIN,
            user_address=chain.user,
            companion_address=companion,
            item=f'Chain order #{chain.order_id}',
            amount=service_fee + deposit,
            currency='CNY',
            service_fee=service_fee,
            deposit=deposit,
            chain_status=effective_status,
            stage=status_fields['stage'],
            payment_status=status_fields['payment_status'],
            note='Synced from chain',
            meta=meta,
            created_at=parse_chain_timestamp(chain.created_at) or now_ms(),
        )
        order.save(force_insert=True)
        logger.info('Chain order {} mirrored locally (status {})', chain.order_id, effective_status)
        return order


def find_chain_order(order_id: str, force_refresh: bool = False,
                     client: Optional[ChainClient] = None) -> Optional[ChainOrder]:
    client = client or get_chain_client()
    return client.order_cache.find(str(order_id), force_refresh=force_refresh)


def sync_chain_order(order_id: str, client: Optional[ChainClient] = None) -> Optional[Order]:
    """Re-read one order from the chain and update its mirror. None when absent on-chain."""
    chain = find_chain_order(order_id, force_refresh=True, client=client)
    if chain is None:
        logger.warning('Chain order {} not found during sync', order_id)
        return None
    return upsert_chain_order(chain)


def sync_chain_orders(client: Optional[ChainClient] = None) -> Dict[str, Any]:
    """
    Bulk sync for the periodic cron run.

    Resumes from the stored event cursor when there is one. An order that
    fails to upsert is reported and skipped; the cursor is then left where it
    was so the next run sees that order again.
    """
    client = client or get_chain_client()
    started = time.monotonic()

    cursor_state = ChainEventCursor.objects.filter(id=ChainEventCursor.ORDERS).first()
    cursor = cursor_state.cursor if cursor_state else None
    incremental = bool(cursor)

    page = client.fetch_orders_page(
        cursor=cursor if incremental else None,
        order='ascending' if incremental else 'descending',
    )

    known_ids = set(
        Order.objects.filter(id__in=[o.order_id for o in page.orders]).values_list('id', flat=True)
    )
    created = 0
    updated = 0
    failures = []
    for chain in page.orders:
        try:
            upsert_chain_order(chain)
        except Exception as exc:
            logger.exception('Failed to sync chain order {}', chain.order_id)
            failures.append({'orderId': chain.order_id, 'error': str(exc)})
            continue
        if chain.order_id in known_ids:
            updated += 1
        else:
            created += 1

    if page.next_cursor and not failures and page.next_cursor != cursor:
        ChainEventCursor.objects.update_or_create(
            id=ChainEventCursor.ORDERS,
            defaults={'cursor': page.next_cursor, 'last_event_ms': page.latest_event_ms},
        )

    result = {
        'total': len(page.orders),
        'created': created,
        'updated': updated,
        'failed': len(failures),
        'failures': failures,
        'mode': 'incremental' if incremental else 'bootstrap',
        'durationMs': int((time.monotonic() - started) * 1000),
    }
    logger.info('Chain sync finished: {}', result)
    return result
