from django.contrib import admin
from .models import CountRoll, CountSession, OcrRerunJob


@admin.register(CountSession)
class CountSessionAdmin(admin.ModelAdmin):
    list_display = (
        "session_number", "status", "started_by", "total_rolls_counted",
        "rolls_pending_review", "rolls_approved", "rolls_rejected", "created_at",
    )
    list_filter = ("status",)
    search_fields = ("session_number", "started_by")
    readonly_fields = ("created_at", "updated_at")


@admin.register(CountRoll)
class CountRollAdmin(admin.ModelAdmin):
    list_display = (
        "id", "session", "capture_sequence", "status", "ocr_confidence_level",
        "is_manual_entry", "is_possible_duplicate", "created_at",
    )
    list_filter = ("status", "ocr_confidence_level", "is_manual_entry", "is_possible_duplicate")
    search_fields = ("counter_quality", "counter_lot_number", "admin_quality", "admin_lot_number")
    readonly_fields = ("created_at", "updated_at", "ocr_processed_at")


@admin.register(OcrRerunJob)
class OcrRerunJobAdmin(admin.ModelAdmin):
    list_display = ("id", "session", "status", "current", "total", "success_count", "failure_count", "created_at")
    list_filter = ("status",)
    readonly_fields = ("created_at", "started_at", "finished_at", "heartbeat_at")
