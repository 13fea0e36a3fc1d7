"""
Opaque keyset cursors for admin list endpoints.

A cursor is the ``(created_at, id)`` of the last row of a page, sent to the
client as base64url JSON. Rows are ordered newest first with ``id`` breaking
ties, so pages stay stable while new rows arrive.
"""
import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from django.db.models import Q, QuerySet

from escrow.models import AuditLog, Order

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200
MAX_CURSOR_LENGTH = 512


@dataclass(frozen=True)
class Cursor:
    created_at: int
    id: str


def encode_cursor_param(cursor: Cursor) -> str:
    payload = json.dumps({'createdAt': cursor.created_at, 'id': cursor.id}, separators=(',', ':'))
    return base64.urlsafe_b64encode(payload.encode('utf-8')).decode('ascii').rstrip('=')


def decode_cursor_param(value: Optional[str]) -> Optional[Cursor]:
    """Decode a cursor parameter. Anything malformed means "from the start"."""
    if not value or not isinstance(value, str) or len(value) > MAX_CURSOR_LENGTH:
        return None
    padded = value + '=' * (-len(value) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')).decode('utf-8'))
    except (binascii.Error, UnicodeError, ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    created_at = data.get('createdAt')
    cursor_id = data.get('id')
    if isinstance(created_at, bool) or not isinstance(created_at, int):
        return None
    if not isinstance(cursor_id, str) or not cursor_id:
        return None
    return Cursor(created_at=created_at, id=cursor_id)


def apply_cursor(queryset: QuerySet, cursor: Optional[Cursor]) -> QuerySet:
    queryset = queryset.order_by('-created_at', '-id')
    if cursor is None:
        return queryset
    return queryset.filter(
        Q(created_at__lt=cursor.created_at)
        | Q(created_at=cursor.created_at, id__lt=cursor.id)
    )


def clamp_page_size(page_size: Any) -> int:
    try:
        size = int(page_size)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_SIZE
    return max(1, min(size, MAX_PAGE_SIZE))


def paginate_by_cursor(queryset: QuerySet, cursor: Optional[Cursor],
                       page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[List[Any], Optional[str]]:
    """One page of rows plus the encoded cursor for the next page, if any."""
    page_size = clamp_page_size(page_size)
    rows = list(apply_cursor(queryset, cursor)[:page_size + 1])
    has_more = len(rows) > page_size
    rows = rows[:page_size]
    next_cursor = None
    if has_more and rows:
        last = rows[-1]
        next_cursor = encode_cursor_param(Cursor(created_at=last.created_at, id=str(last.pk)))
    return rows, next_cursor


def query_orders_cursor(cursor: Optional[str] = None, page_size: Any = DEFAULT_PAGE_SIZE,
                        stage: Optional[str] = None, source: Optional[str] = None,
                        q: Optional[str] = None) -> Tuple[List[Any], Optional[str]]:
    queryset = Order.objects.all()
    if stage:
        queryset = queryset.filter(stage=stage)
    if source:
        queryset = queryset.filter(source=source)
    if q:
        queryset = queryset.filter(
            Q(id__icontains=q) | Q(user_address__icontains=q)
            | Q(companion_address__icontains=q) | Q(item__icontains=q)
        )
    return paginate_by_cursor(queryset, decode_cursor_param(cursor), page_size)


def query_audit_logs_cursor(cursor: Optional[str] = None, page_size: Any = DEFAULT_PAGE_SIZE,
                            action: Optional[str] = None,
                            q: Optional[str] = None) -> Tuple[List[Any], Optional[str]]:
    queryset = AuditLog.objects.all()
    if action:
        queryset = queryset.filter(action=action)
    if q:
        queryset = queryset.filter(
            Q(target_id__icontains=q) | Q(action__icontains=q) | Q(actor__icontains=q)
        )
    return paginate_by_cursor(queryset, decode_cursor_param(cursor), page_size)
