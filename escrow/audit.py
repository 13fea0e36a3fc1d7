from typing import Any, Dict, Iterable, Optional, Union

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_ipv46_address
from loguru import logger

from escrow.models import AuditLog


def _valid_ip(value: Optional[str]) -> Optional[str]:
    value = (value or '').strip()
    if not value:
        return None
    try:
        validate_ipv46_address(value)
    except ValidationError:
        return None
    return value


def client_ip(request) -> Optional[str]:
    """First parseable address among X-Forwarded-For, X-Real-IP and REMOTE_ADDR."""
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    candidates = forwarded.split(',')[:1] if forwarded else []
    candidates += [request.META.get('HTTP_X_REAL_IP'), request.META.get('REMOTE_ADDR')]
    for candidate in candidates:
        ip = _valid_ip(candidate)
        if ip:
            return ip
    return None


def record_audit(request, action: str, target_type: str = '',
                 target_id: Union[str, Iterable[str], None] = None,
                 meta: Optional[Dict[str, Any]] = None,
                 actor_role: Optional[str] = None) -> AuditLog:
    """Write one audit entry and trim the log to ``ADMIN_AUDIT_LOG_LIMIT`` rows."""
    principal = getattr(request, 'user', None) if request is not None else None
    role = actor_role or getattr(principal, 'role', None) or AuditLog.ActorRole.ADMIN
    if target_id is not None and not isinstance(target_id, str):
        target_id = ','.join(str(item) for item in target_id)

    entry = AuditLog.objects.create(
        actor_role=role,
        actor=getattr(principal, 'name', '') or '',
        action=action,
        target_type=target_type or '',
        target_id=target_id or '',
        meta=meta,
        ip=client_ip(request) if request is not None else None,
    )
    logger.info('Audit {} by {} on {} {}', action, role, target_type or '-', target_id or '-')

    limit = getattr(settings, 'ADMIN_AUDIT_LOG_LIMIT', 5000)
    if limit > 0:
        stale = AuditLog.objects.order_by('-created_at', '-id').values_list('id', flat=True)[limit:]
        stale_ids = list(stale)
        if stale_ids:
            AuditLog.objects.filter(id__in=stale_ids).delete()
    return entry
