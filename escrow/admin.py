from django.contrib import admin

from escrow.models import AuditLog, ChainEventCursor, CronLock, LedgerCreditReceipt, Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "source", "user_address", "companion_address", "chain_status", "stage", "created_at")
    list_filter = ("source", "stage", "payment_status")
    search_fields = ("id", "user_address", "companion_address")


@admin.register(LedgerCreditReceipt)
class LedgerCreditReceiptAdmin(admin.ModelAdmin):
    list_display = ("receipt_id", "user_address", "amount", "status", "digest", "created_at")
    list_filter = ("status", "source")
    search_fields = ("receipt_id", "user_address", "order_id", "digest")


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "actor_role", "actor", "target_type", "target_id", "created_at")
    list_filter = ("actor_role", "action")
    search_fields = ("target_id", "action")


admin.site.register(CronLock)
admin.site.register(ChainEventCursor)
