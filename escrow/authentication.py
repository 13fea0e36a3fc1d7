"""
Authentication for admin and cron callers.

Both schemes are header based; DRF turns a failed authentication into a 401
because each class declares an ``authenticate_header``.
"""
import hmac
from dataclasses import dataclass

from django.conf import settings
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication
from rest_framework.permissions import BasePermission


@dataclass
class Principal:
    role: str
    name: str

    @property
    def is_authenticated(self) -> bool:
        return True


def _matches(provided: str, expected: str) -> bool:
    return bool(provided) and bool(expected) and hmac.compare_digest(provided, expected)


class AdminTokenAuthentication(BaseAuthentication):
    """``Authorization: Bearer <ADMIN_API_TOKEN>`` or ``X-Admin-Token``."""

    def authenticate(self, request):
        expected = getattr(settings, 'ADMIN_API_TOKEN', '')
        header = request.META.get('HTTP_AUTHORIZATION', '')
        token = header[7:].strip() if header.lower().startswith('bearer ') else ''
        token = token or request.META.get('HTTP_X_ADMIN_TOKEN', '').strip()
        if not token:
            return None
        if not expected:
            raise exceptions.AuthenticationFailed('Admin API is not configured.')
        if not _matches(token, expected):
            raise exceptions.AuthenticationFailed('Invalid admin token.')
        return Principal(role='admin', name='admin-token'), token

    def authenticate_header(self, request):
        return 'Bearer'


class CronAuthentication(BaseAuthentication):
    """
    Scheduler calls carry the platform cron header or the shared secret.

    Without a configured ``CRON_SECRET`` only non-production environments
    accept unauthenticated calls.
    """

    def authenticate(self, request):
        if request.META.get('HTTP_X_VERCEL_CRON') == '1':
            return Principal(role='cron', name='platform-cron'), None

        secret = getattr(settings, 'CRON_SECRET', '')
        if not secret:
            if getattr(settings, 'APP_ENV', 'local') != 'production':
                return Principal(role='cron', name='local-cron'), None
            raise exceptions.AuthenticationFailed('Cron secret is not configured.')

        provided = request.META.get('HTTP_X_CRON_SECRET', '') or request.query_params.get('token', '')
        if not _matches(provided, secret):
            raise exceptions.AuthenticationFailed('Invalid cron secret.')
        return Principal(role='cron', name='cron-secret'), None

    def authenticate_header(self, request):
        return 'CronSecret'


class IsAuthenticatedPrincipal(BasePermission):

    def has_permission(self, request, view):
        return bool(getattr(request.user, 'is_authenticated', False))
