from django.contrib import admin
from .models import LedgerTransaction, SessionReconciliation


@admin.register(LedgerTransaction)
class LedgerTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "transaction_type", "source_session_id", "source_roll_id", "quality", "lot_number", "meters", "created_at")
    list_filter = ("transaction_type",)
    search_fields = ("idempotency_key", "quality", "lot_number")
    readonly_fields = ("created_at",)


@admin.register(SessionReconciliation)
class SessionReconciliationAdmin(admin.ModelAdmin):
    list_display = ("id", "session_id", "roll_count", "total_meters", "reconciled_by", "created_at")
    search_fields = ("reconciled_by",)
    readonly_fields = ("created_at",)
