from decimal import Decimal
from typing import Any, Dict

from django.db import models
from django.db.models import Q


class SessionStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    ACTIVE = "active", "Active"
    COUNTING_COMPLETE = "counting_complete", "Counting complete"
    RECONCILED = "reconciled", "Reconciled"
    CANCELLED = "cancelled", "Cancelled"


OPEN_SESSION_STATUSES = (SessionStatus.DRAFT, SessionStatus.ACTIVE)
REVIEWABLE_SESSION_STATUSES = (
    SessionStatus.DRAFT,
    SessionStatus.ACTIVE,
    SessionStatus.COUNTING_COMPLETE,
)


class RollStatus(models.TextChoices):
    PENDING_REVIEW = "pending_review", "Pending review"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    RECOUNT_REQUESTED = "recount_requested", "Recount requested"


class ConfidenceLevel(models.TextChoices):
    HIGH = "high", "High"
    MEDIUM = "medium", "Medium"
    LOW = "low", "Low"


class OcrStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class CountSession(models.Model):
    session_number = models.CharField(max_length=32, unique=True)
    status = models.CharField(
        max_length=20, choices=SessionStatus.choices, default=SessionStatus.DRAFT, db_index=True
    )
    started_by = models.CharField(max_length=64, db_index=True)

    total_rolls_counted = models.PositiveIntegerField(default=0)
    rolls_approved = models.PositiveIntegerField(default=0)
    rolls_rejected = models.PositiveIntegerField(default=0)
    rolls_pending_review = models.PositiveIntegerField(default=0)
    rolls_recount_requested = models.PositiveIntegerField(default=0)
    ocr_high_confidence_count = models.PositiveIntegerField(default=0)
    ocr_medium_confidence_count = models.PositiveIntegerField(default=0)
    ocr_low_confidence_count = models.PositiveIntegerField(default=0)
    manual_entry_count = models.PositiveIntegerField(default=0)

    notes = models.TextField(blank=True, default="")
    cancellation_reason = models.TextField(blank=True, default="")
    reviewed_by = models.CharField(max_length=64, blank=True, default="")
    reviewed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    last_activity_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    reconciled_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["started_by"],
                condition=Q(status__in=["draft", "active"]),
                name="one_open_session_per_counter",
            ),
        ]

    def __str__(self):
        return f"{self.session_number} ({self.status})"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SESSION_STATUSES


class CountRoll(models.Model):
    session = models.ForeignKey(CountSession, on_delete=models.CASCADE, related_name="rolls")
    capture_sequence = models.PositiveIntegerField()
    photo_path = models.CharField(max_length=255, blank=True, default="")
    photo_hash_sha256 = models.CharField(max_length=64, blank=True, default="", db_index=True)
    captured_by = models.CharField(max_length=64, blank=True, default="")

    counter_quality = models.CharField(max_length=64, blank=True, default="")
    counter_color = models.CharField(max_length=64, blank=True, default="")
    counter_lot_number = models.CharField(max_length=64, blank=True, default="")
    counter_meters = models.DecimalField(max_digits=10, decimal_places=2)

    ocr_quality = models.CharField(max_length=64, null=True, blank=True)
    ocr_color = models.CharField(max_length=64, null=True, blank=True)
    ocr_lot_number = models.CharField(max_length=64, null=True, blank=True)
    ocr_meters = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    ocr_raw_text = models.TextField(blank=True, default="")
    ocr_confidence_score = models.FloatField(null=True, blank=True)
    ocr_confidence_level = models.CharField(
        max_length=8, choices=ConfidenceLevel.choices, null=True, blank=True, db_index=True
    )
    ocr_status = models.CharField(max_length=12, choices=OcrStatus.choices, default=OcrStatus.PENDING)
    ocr_processed_at = models.DateTimeField(null=True, blank=True)

    admin_quality = models.CharField(max_length=64, null=True, blank=True)
    admin_color = models.CharField(max_length=64, null=True, blank=True)
    admin_lot_number = models.CharField(max_length=64, null=True, blank=True)
    admin_meters = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    admin_notes = models.TextField(blank=True, default="")

    is_manual_entry = models.BooleanField(default=False)
    is_not_label_warning = models.BooleanField(default=False)
    is_possible_duplicate = models.BooleanField(default=False)
    # Lookup only; the referenced roll does not own this one.
    duplicate_of_roll = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )

    status = models.CharField(
        max_length=20, choices=RollStatus.choices, default=RollStatus.PENDING_REVIEW, db_index=True
    )
    recount_reason = models.TextField(blank=True, default="")
    reviewed_by = models.CharField(max_length=64, blank=True, default="")
    reviewed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["capture_sequence", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["session", "capture_sequence"], name="unique_capture_sequence_per_session"
            ),
        ]
        indexes = [
            models.Index(fields=["session", "status"], name="countroll_session_status_idx"),
            models.Index(fields=["session", "ocr_confidence_level"], name="countroll_session_conf_idx"),
        ]

    def __str__(self):
        return f"{self.session_id} | roll #{self.capture_sequence}"

    # Admin overrides win over the counter's entry; OCR values are advisory only.
    @property
    def effective_quality(self) -> str:
        return self.admin_quality if self.admin_quality is not None else self.counter_quality

    @property
    def effective_color(self) -> str:
        return self.admin_color if self.admin_color is not None else self.counter_color

    @property
    def effective_lot_number(self) -> str:
        return self.admin_lot_number if self.admin_lot_number is not None else self.counter_lot_number

    @property
    def effective_meters(self) -> Decimal:
        return self.admin_meters if self.admin_meters is not None else self.counter_meters

    def effective_values(self) -> Dict[str, Any]:
        return {
            "quality": self.effective_quality,
            "color": self.effective_color,
            "lot_number": self.effective_lot_number,
            "meters": self.effective_meters,
        }


class RerunJobStatus(models.TextChoices):
    QUEUED = "queued", "Queued"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    FAILED = "failed", "Failed"


ACTIVE_RERUN_STATUSES = (RerunJobStatus.QUEUED, RerunJobStatus.RUNNING)


class OcrRerunJob(models.Model):
    """Persistent progress of one bulk OCR rerun over a session's rolls."""

    session = models.ForeignKey(CountSession, on_delete=models.CASCADE, related_name="rerun_jobs")
    status = models.CharField(
        max_length=12, choices=RerunJobStatus.choices, default=RerunJobStatus.QUEUED, db_index=True
    )
    requested_by = models.CharField(max_length=64, blank=True, default="")
    # Snapshot of roll ids in capture order, taken when the job is created.
    roll_ids = models.JSONField(default=list)
    total = models.PositiveIntegerField(default=0)
    current = models.PositiveIntegerField(default=0)
    success_count = models.PositiveIntegerField(default=0)
    failure_count = models.PositiveIntegerField(default=0)
    failures = models.JSONField(default=list, blank=True)
    cancel_requested = models.BooleanField(default=False)
    last_error = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    # Touched by the runner on claim and after every item; a stale value means the runner died.
    heartbeat_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"OCR rerun {self.id} for session {self.session_id} ({self.status})"

    def progress(self) -> Dict[str, int]:
        return {
            "current": self.current,
            "total": self.total,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RERUN_STATUSES

