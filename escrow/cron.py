"""
Cron mutual exclusion.
"""
from django.db import IntegrityError, transaction
from loguru import logger

from escrow.models import CronLock
from escrow.utils import now_ms


def acquire_cron_lock(name: str, ttl_ms: int) -> bool:
    """
    Take ``cron:<name>`` for ``ttl_ms`` milliseconds.

    Never waits: returns False while another holder's lock is unexpired. The
    lock is not released by the holder; it lapses when the TTL runs out.
    """
    if not name or ttl_ms <= 0:
        return False
    key = f'cron:{name}'
    now = now_ms()
    try:
        with transaction.atomic():
            CronLock.objects.filter(name=key, expires_at__lte=now).delete()
            CronLock.objects.create(name=key, expires_at=now + ttl_ms)
    except IntegrityError:
        logger.info('Cron lock {} is held, skipping run', key)
        return False
    logger.debug('Cron lock {} acquired for {}ms', key, ttl_ms)
    return True
