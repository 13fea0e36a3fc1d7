"""
Admin and cron endpoints for the chain order lifecycle.
"""
from typing import Any, Dict

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db.models import Q
from django.http import Http404
from loguru import logger
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from escrow.actions import cancel_chain_order, resolve_chain_dispute
from escrow.audit import record_audit
from escrow.authentication import AdminTokenAuthentication, CronAuthentication, IsAuthenticatedPrincipal
from escrow.auto_cancel import auto_cancel_chain_orders
from escrow.auto_finalize import auto_finalize_chain_orders_summary
from escrow.cache import ResponseCache
from escrow.chain_clients import get_chain_client
from escrow.cleanup import cleanup_missing_chain_orders
from escrow.conf import get_missing_cleanup_config
from escrow.cron import acquire_cron_lock
from escrow.cursors import query_audit_logs_cursor, query_orders_cursor
from escrow.errors import (
    ChainConfigurationError,
    ChainOrderNotFound,
    ChainRpcError,
    EscrowError,
    EscrowValidationError,
    IllegalTransitionError,
    InvalidCreditAmount,
)
from escrow.ledger import credit_ledger_with_admin
from escrow.models import AuditLog, Order
from escrow.reconcile import build_reconcile_report, repair_reconcile
from escrow.schemas import (
    AutoCancelRequest,
    AutoFinalizeRequest,
    CancelOrderRequest,
    CleanupMissingRequest,
    CursorQuery,
    LedgerCreditRequest,
    ReconcileRepairRequest,
    ResolveDisputeRequest,
    parse_request,
)
from escrow.sync import find_chain_order, sync_chain_order, sync_chain_orders

overview_cache = ResponseCache()


def escrow_error_response(exc: EscrowError) -> Response:
    if isinstance(exc, ChainOrderNotFound):
        logger.info('Chain order {} not found', exc.order_id)
        return Response(
            {
                'ok': False,
                'error': 'chain_order_not_found',
                'message': str(exc),
                'orderId': exc.order_id,
                'troubleshooting': exc.TROUBLESHOOTING,
            },
            status=status.HTTP_404_NOT_FOUND,
        )
    if isinstance(exc, IllegalTransitionError):
        logger.info('Rejected illegal transition: {}', exc.message)
        return Response(
            {
                'ok': False,
                'error': 'illegal_transition',
                'message': exc.message,
                'currentStatus': exc.current_status,
                'allowedStatuses': exc.allowed_statuses,
            },
            status=status.HTTP_400_BAD_REQUEST,
        )
    if isinstance(exc, InvalidCreditAmount):
        return Response(
            {'ok': False, 'error': 'invalid_amount', 'message': exc.message},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if isinstance(exc, EscrowValidationError):
        logger.info('Rejected request: {}', exc.message)
        return Response(
            {'ok': False, 'error': 'invalid_request', 'message': exc.message},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if isinstance(exc, ChainConfigurationError):
        logger.error('Chain client misconfiguration: {}', exc)
        return Response(
            {'ok': False, 'error': 'misconfiguration', 'message': 'Chain client misconfiguration.'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(exc, ChainRpcError):
        logger.error('Chain RPC failure: {}', exc)
        return Response(
            {'ok': False, 'error': 'chain_error', 'message': str(exc)},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    logger.error('Escrow error: {}', exc)
    return Response(
        {'ok': False, 'error': 'internal_error', 'message': str(exc)},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        'id': order.id,
        'source': order.source,
        'userAddress': order.user_address,
        'companionAddress': order.companion_address,
        'item': order.item,
        'amount': str(order.amount),
        'currency': order.currency,
        'serviceFee': str(order.service_fee) if order.service_fee is not None else None,
        'deposit': str(order.deposit) if order.deposit is not None else None,
        'chainStatus': order.chain_status,
        'stage': order.stage,
        'paymentStatus': order.payment_status,
        'note': order.note,
        'meta': order.meta,
        'createdAt': order.created_at,
        'updatedAt': order.updated_at.isoformat() if order.updated_at else None,
    }


def serialize_audit_log(entry: AuditLog) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'actorRole': entry.actor_role,
        'actor': entry.actor,
        'action': entry.action,
        'targetType': entry.target_type,
        'targetId': entry.target_id,
        'meta': entry.meta,
        'ip': entry.ip,
        'createdAt': entry.created_at,
    }


class EscrowAPIView(APIView):
    """Translates escrow errors into structured JSON responses."""

    def handle_exception(self, exc):
        if isinstance(exc, EscrowError):
            return escrow_error_response(exc)
        if isinstance(exc, (exceptions.APIException, Http404, PermissionDenied)):
            return super().handle_exception(exc)
        logger.exception('Unhandled error in {}: {}', type(self).__name__, exc)
        return Response(
            {'ok': False, 'error': 'internal_error', 'message': str(exc)},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class AdminAPIView(EscrowAPIView):
    authentication_classes = [AdminTokenAuthentication]
    permission_classes = [IsAuthenticatedPrincipal]


class CronAPIView(EscrowAPIView):
    """
    Scheduled sweep entry point.

    Authentication runs before the handler, so unauthorized calls never reach
    the lock table.
    """
    authentication_classes = [CronAuthentication]
    permission_classes = [IsAuthenticatedPrincipal]
    lock_name = ''

    def run(self, request) -> Dict[str, Any]:
        raise NotImplementedError

    def get(self, request, *args, **kwargs):
        ttl_ms = getattr(settings, 'CRON_LOCK_TTL_MS', 600000)
        if not acquire_cron_lock(self.lock_name, ttl_ms):
            return Response({'ok': False, 'error': 'locked'}, status=status.HTTP_429_TOO_MANY_REQUESTS)
        return Response({'ok': True, **self.run(request)}, status=status.HTTP_200_OK)

    post = get


# Local mirror queries

class AdminOrdersView(AdminAPIView):

    def get(self, request, *args, **kwargs):
        query = parse_request(CursorQuery, request.query_params)
        rows, next_cursor = query_orders_cursor(query.cursor, query.page_size,
                                                stage=query.stage, source=query.source, q=query.q)
        return Response({'items': [serialize_order(row) for row in rows], 'nextCursor': next_cursor})


class AdminAuditLogView(AdminAPIView):

    def get(self, request, *args, **kwargs):
        query = parse_request(CursorQuery, request.query_params)
        rows, next_cursor = query_audit_logs_cursor(query.cursor, query.page_size, action=query.action, q=query.q)
        return Response({'items': [serialize_audit_log(row) for row in rows], 'nextCursor': next_cursor})


# Chain order reads

class ChainOrdersOverviewView(AdminAPIView):
    """Chain orders next to the local mirror, cached briefly and served with an ETag."""

    cache_key = 'chain-orders-overview'

    def _build(self, client, force_refresh: bool) -> Dict[str, Any]:
        chain_orders = client.order_cache.fetch_all(force_refresh=force_refresh)
        chain_ids = {order.order_id for order in chain_orders}
        local_ids = set(
            Order.objects.filter(Q(source=Order.Source.CHAIN) | Q(chain_status__isnull=False))
            .values_list('id', flat=True)
        )
        return {
            'orders': [
                {**order.to_dict(), 'local': order.order_id in local_ids} for order in chain_orders
            ],
            'missingLocal': sorted(chain_ids - local_ids),
            'missingChain': sorted(
                Order.objects.filter(source=Order.Source.CHAIN).exclude(id__in=chain_ids)
                .values_list('id', flat=True)
            ),
            'stats': client.order_cache.order_stats(),
        }

    def get(self, request, *args, **kwargs):
        force_refresh = request.query_params.get('refresh') == 'true'
        entry = None if force_refresh else overview_cache.get(self.cache_key)
        if entry is None:
            payload = self._build(get_chain_client(), force_refresh)
            ttl_ms = getattr(settings, 'ADMIN_CHAIN_OVERVIEW_CACHE_TTL_MS', 5000)
            entry = overview_cache.set(self.cache_key, payload, ttl_ms)

        if request.META.get('HTTP_IF_NONE_MATCH') == entry.etag:
            return Response(status=status.HTTP_304_NOT_MODIFIED, headers={'ETag': entry.etag})
        return Response(entry.value, status=status.HTTP_200_OK, headers={'ETag': entry.etag})


class ChainOrderDetailView(AdminAPIView):

    def get(self, request, order_id: str, *args, **kwargs):
        force_refresh = request.query_params.get('refresh') == 'true'
        chain = find_chain_order(order_id, force_refresh=force_refresh, client=get_chain_client())
        if chain is None:
            raise ChainOrderNotFound(order_id)
        local = Order.objects.filter(id=chain.order_id).first()
        return Response({
            'order': chain.to_dict(),
            'local': serialize_order(local) if local else None,
        })


class ChainOrderSyncView(AdminAPIView):

    def post(self, request, order_id: str, *args, **kwargs):
        order = sync_chain_order(order_id, client=get_chain_client())
        if order is None:
            raise ChainOrderNotFound(order_id)
        record_audit(request, 'chain.sync', 'order', order.id, {'chainStatus': order.chain_status})
        return Response({'ok': True, 'order': serialize_order(order)})


# Chain order actions

class ChainCancelView(AdminAPIView):

    def post(self, request, *args, **kwargs):
        body = parse_request(CancelOrderRequest, request.data)
        result = cancel_chain_order(body.order_id, client=get_chain_client())
        record_audit(request, 'chain.cancel', 'order', result.order_id, {
            'reason': body.reason,
            'digest': result.tx.digest,
            'previousStatus': result.previous_status,
        })
        return Response({'ok': True, **result.to_dict()})


class ChainResolveView(AdminAPIView):

    def post(self, request, *args, **kwargs):
        body = parse_request(ResolveDisputeRequest, request.data)
        result = resolve_chain_dispute(
            body.order_id,
            body.service_refund_bps,
            body.deposit_slash_bps,
            client=get_chain_client(),
        )
        record_audit(request, 'chain.resolve_dispute', 'order', result.order_id, {
            'serviceRefundBps': body.service_refund_bps,
            'depositSlashBps': body.deposit_slash_bps,
            'digest': result.tx.digest,
        })
        return Response({'ok': True, **result.to_dict()})


def _auto_cancel_audit_meta(result) -> Dict[str, Any]:
    return {
        'enabled': result.enabled,
        'hours': result.hours,
        'dryRun': result.dry_run,
        'candidates': result.candidates,
        'canceled': result.canceled,
        'failed': len(result.failures),
    }


def _auto_finalize_audit_meta(summary: Dict[str, Any]) -> Dict[str, Any]:
    complete, finalize = summary['complete'], summary['finalize']
    return {
        'dryRun': summary['dryRun'],
        'complete': {
            'enabled': complete['enabled'],
            'hours': complete['hours'],
            'candidates': complete['candidates'],
            'completed': complete['completed'],
            'failed': len(complete['failures']),
        },
        'finalize': {
            'enabled': finalize['enabled'],
            'candidates': finalize['candidates'],
            'finalized': finalize['finalized'],
            'failed': len(finalize['failures']),
        },
    }


class ChainAutoCancelView(AdminAPIView):

    def post(self, request, *args, **kwargs):
        body = parse_request(AutoCancelRequest, request.data)
        result = auto_cancel_chain_orders(dry_run=body.dry_run, limit=body.limit, client=get_chain_client())
        record_audit(request, 'chain.auto_cancel', 'order', result.canceled_ids,
                     _auto_cancel_audit_meta(result))
        return Response({'ok': True, **result.to_dict()})


class ChainAutoFinalizeView(AdminAPIView):

    def post(self, request, *args, **kwargs):
        body = parse_request(AutoFinalizeRequest, request.data)
        summary = auto_finalize_chain_orders_summary(
            dry_run=body.dry_run,
            complete_limit=body.complete_limit,
            finalize_limit=body.finalize_limit,
            client=get_chain_client(),
        )
        record_audit(request, 'chain.auto_finalize', 'order', None, _auto_finalize_audit_meta(summary))
        return Response({'ok': True, **summary})


class ChainCleanupMissingView(AdminAPIView):

    def post(self, request, *args, **kwargs):
        body = parse_request(CleanupMissingRequest, request.data)
        result = cleanup_missing_chain_orders(
            max_age_hours=body.max_age_hours,
            max_delete=body.max_delete,
            chain_only=body.chain_only,
            dry_run=body.dry_run,
            client=get_chain_client(),
        )
        record_audit(request, 'chain.cleanup_missing', 'order', result['ids'], {
            'maxAgeHours': body.max_age_hours,
            'chainOnly': body.chain_only,
            'dryRun': body.dry_run,
            'missingCount': result['missingCount'],
            'deleted': result['deleted'],
        })
        return Response({'ok': True, **result})


class ChainReconcileView(AdminAPIView):

    def get(self, request, *args, **kwargs):
        report = build_reconcile_report(
            force_refresh=request.query_params.get('refresh') == 'true',
            detailed=request.query_params.get('detailed') == 'true',
            client=get_chain_client(),
        )
        return Response(report)

    def post(self, request, *args, **kwargs):
        body = parse_request(ReconcileRepairRequest, request.data)
        result = repair_reconcile(body.action, client=get_chain_client())
        record_audit(request, 'chain.reconcile', 'order', None, {
            'action': body.action,
            'synced': result['synced'],
            'failed': len(result['failures']),
        })
        return Response({'ok': True, **result})


class ChainCacheView(AdminAPIView):

    def get(self, request, *args, **kwargs):
        cache = get_chain_client().order_cache
        return Response({'cache': cache.stats(), 'orders': cache.order_stats()})

    def post(self, request, *args, **kwargs):
        cache = get_chain_client().order_cache
        orders = cache.fetch_all(force_refresh=True)
        overview_cache.clear()
        return Response({'ok': True, 'orderCount': len(orders), 'cache': cache.stats()})

    def delete(self, request, *args, **kwargs):
        get_chain_client().order_cache.clear()
        overview_cache.clear()
        record_audit(request, 'chain.cache_clear', 'cache', 'chain-orders')
        return Response({'ok': True})


# Ledger

class LedgerCreditView(AdminAPIView):

    def post(self, request, *args, **kwargs):
        body = parse_request(LedgerCreditRequest, request.data)
        result = credit_ledger_with_admin(
            user_address=body.user,
            amount=body.amount,
            receipt_id=body.receipt_id,
            order_id=body.order_id,
            note=body.note,
            source=body.source,
            client=get_chain_client(),
        )
        record_audit(request, 'ledger.credit', 'ledger', body.receipt_id, {
            'user': body.user,
            'amount': str(body.amount),
            'orderId': body.order_id,
            'duplicated': result.duplicated,
            'digest': result.digest,
        })
        return Response({'ok': True, **result.to_dict()})


# Cron

class CronChainSyncView(CronAPIView):
    lock_name = 'chain-sync'

    def run(self, request) -> Dict[str, Any]:
        result = sync_chain_orders(client=get_chain_client())
        record_audit(request, 'chain.sync_all', 'order', None, {
            'mode': result['mode'],
            'total': result['total'],
            'failed': result['failed'],
        }, actor_role=AuditLog.ActorRole.CRON)
        return result


class CronAutoCancelView(CronAPIView):
    lock_name = 'chain-auto-cancel'

    def run(self, request) -> Dict[str, Any]:
        result = auto_cancel_chain_orders(client=get_chain_client())
        record_audit(request, 'chain.auto_cancel', 'order', result.canceled_ids,
                     _auto_cancel_audit_meta(result), actor_role=AuditLog.ActorRole.CRON)
        return result.to_dict()


class CronAutoFinalizeView(CronAPIView):
    lock_name = 'chain-auto-finalize'

    def run(self, request) -> Dict[str, Any]:
        summary = auto_finalize_chain_orders_summary(client=get_chain_client())
        record_audit(request, 'chain.auto_finalize', 'order', None,
                     _auto_finalize_audit_meta(summary), actor_role=AuditLog.ActorRole.CRON)
        return summary


class CronCleanupMissingView(CronAPIView):
    lock_name = 'chain-cleanup-missing'

    def run(self, request) -> Dict[str, Any]:
        config = get_missing_cleanup_config()
        if not config.runnable:
            return {
                'enabled': False,
                'maxAgeHours': config.max_age_hours,
                'missingCount': 0,
                'eligibleCount': 0,
                'deleted': 0,
            }
        result = cleanup_missing_chain_orders(
            max_age_hours=config.max_age_hours,
            max_delete=config.max_delete,
            chain_only=True,
            client=get_chain_client(),
        )
        record_audit(request, 'chain.cleanup_missing', 'order', result['ids'], {
            'maxAgeHours': config.max_age_hours,
            'missingCount': result['missingCount'],
            'deleted': result['deleted'],
        }, actor_role=AuditLog.ActorRole.CRON)
        return {'enabled': True, 'maxAgeHours': config.max_age_hours, **result}
