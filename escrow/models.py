import uuid

from django.db import models
from django.utils import timezone

from escrow.utils import now_ms


def new_audit_id() -> str:
    return uuid.uuid4().hex


class Order(models.Model):
    class Source(models.TextChoices):
        CHAIN = 'chain', 'Chain'
        APP = 'app', 'App'
        SEED = 'seed', 'Seed'

    class Stage(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        IN_PROGRESS = 'in_progress', 'In progress'
        COMPLETED = 'completed', 'Completed'
        CANCELLED = 'cancelled', 'Cancelled'

    # Chain-sourced orders reuse the numeric on-chain order id.
    id = models.CharField(max_length=64, primary_key=True)
    source = models.CharField(max_length=16, choices=Source.choices, default=Source.APP)
    user_address = models.CharField(max_length=128, blank=True, default='')
    companion_address = models.CharField(max_length=128, blank=True, null=True)
    item = models.CharField(max_length=255, blank=True, default='')
    amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    currency = models.CharField(max_length=8, default='CNY')
    service_fee = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    deposit = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    chain_status = models.PositiveSmallIntegerField(blank=True, null=True)
    stage = models.CharField(max_length=16, choices=Stage.choices, default=Stage.PENDING)
    payment_status = models.CharField(max_length=32, blank=True, default='')
    note = models.CharField(max_length=255, blank=True, default='')
    meta = models.JSONField(default=dict, blank=True)
    # epoch milliseconds
    created_at = models.BigIntegerField(default=now_ms, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']


class AuditLog(models.Model):
    class ActorRole(models.TextChoices):
        ADMIN = 'admin', 'Admin'
        CRON = 'cron', 'Cron'

    id = models.CharField(max_length=40, primary_key=True, default=new_audit_id)
    actor_role = models.CharField(max_length=16, choices=ActorRole.choices, default=ActorRole.ADMIN)
    actor = models.CharField(max_length=128, blank=True, default='')
    action = models.CharField(max_length=64, db_index=True)
    target_type = models.CharField(max_length=32, blank=True, default='')
    target_id = models.TextField(blank=True, default='')
    meta = models.JSONField(blank=True, null=True)
    ip = models.GenericIPAddressField(blank=True, null=True)
    created_at = models.BigIntegerField(default=now_ms, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']


class LedgerCreditReceipt(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CREDITED = 'credited', 'Credited'
        FAILED = 'failed', 'Failed'

    receipt_id = models.CharField(max_length=128, unique=True)
    order_id = models.CharField(max_length=64, blank=True, null=True)
    user_address = models.CharField(max_length=128)
    amount = models.CharField(max_length=32)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    source = models.CharField(max_length=32, blank=True, default='manual')
    note = models.CharField(max_length=255, blank=True, default='')
    digest = models.CharField(max_length=64, blank=True, null=True)
    error = models.TextField(blank=True, default='')
    credited_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def mark_credited(self, digest: str) -> None:
        self.status = self.Status.CREDITED
        self.digest = digest
        self.error = ''
        self.credited_at = timezone.now()

    def mark_failed(self, error: str) -> None:
        self.status = self.Status.FAILED
        self.error = error[:2000]


class CronLock(models.Model):
    name = models.CharField(max_length=128, unique=True)
    # epoch milliseconds
    expires_at = models.BigIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)


class ChainEventCursor(models.Model):
    ORDERS = 'chain-orders'

    id = models.CharField(max_length=64, primary_key=True, default=ORDERS)
    # {"txDigest": ..., "eventSeq": ...} as returned by suix_queryEvents
    cursor = models.JSONField(blank=True, null=True)
    last_event_ms = models.BigIntegerField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)
