from decimal import Decimal

from django.conf import settings
from PIL import Image, UnidentifiedImageError
from rest_framework import serializers

from counts.models import CountRoll, CountSession, OcrRerunJob, SessionStatus
from counts.services.photos import signed_photo_url
from counts.services.triage import SORT_FIELDS, RollFilter


class CountSessionSerializer(serializers.ModelSerializer):
    can_complete = serializers.SerializerMethodField()

    class Meta:
        model = CountSession
        fields = [
            "id", "session_number", "status", "started_by",
            "total_rolls_counted", "rolls_pending_review", "rolls_approved",
            "rolls_rejected", "rolls_recount_requested",
            "ocr_high_confidence_count", "ocr_medium_confidence_count",
            "ocr_low_confidence_count", "manual_entry_count",
            "notes", "cancellation_reason", "reviewed_by", "reviewed_at",
            "created_at", "updated_at", "last_activity_at", "completed_at",
            "reconciled_at", "cancelled_at", "can_complete",
        ]
        read_only_fields = fields

    def get_can_complete(self, obj) -> bool:
        return obj.rolls_pending_review == 0 and obj.total_rolls_counted > 0


class CountRollSerializer(serializers.ModelSerializer):
    effective = serializers.SerializerMethodField()
    photo_url = serializers.SerializerMethodField()
    thumbnail_url = serializers.SerializerMethodField()

    class Meta:
        model = CountRoll
        fields = [
            "id", "session", "capture_sequence", "captured_by",
            "counter_quality", "counter_color", "counter_lot_number", "counter_meters",
            "ocr_quality", "ocr_color", "ocr_lot_number", "ocr_meters", "ocr_raw_text",
            "ocr_confidence_score", "ocr_confidence_level", "ocr_status", "ocr_processed_at",
            "admin_quality", "admin_color", "admin_lot_number", "admin_meters", "admin_notes",
            "is_manual_entry", "is_not_label_warning", "is_possible_duplicate", "duplicate_of_roll",
            "status", "recount_reason", "reviewed_by", "reviewed_at",
            "created_at", "updated_at", "effective", "photo_url", "thumbnail_url",
        ]
        read_only_fields = fields

    def get_effective(self, obj) -> dict:
        values = obj.effective_values()
        values["meters"] = str(values["meters"]) if values["meters"] is not None else None
        return values

    def get_photo_url(self, obj):
        return signed_photo_url(obj.photo_path, "medium") if obj.photo_path else None

    def get_thumbnail_url(self, obj):
        return signed_photo_url(obj.photo_path, "thumb") if obj.photo_path else None


class OcrRerunJobSerializer(serializers.ModelSerializer):
    progress = serializers.SerializerMethodField()

    class Meta:
        model = OcrRerunJob
        fields = [
            "id", "session", "status", "requested_by", "total", "current",
            "success_count", "failure_count", "failures", "cancel_requested",
            "last_error", "created_at", "started_at", "finished_at", "heartbeat_at", "progress",
        ]
        read_only_fields = fields

    def get_progress(self, obj) -> dict:
        return obj.progress()


class SessionListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=["all"] + list(SessionStatus.values), required=False, default="all",
    )
    search = serializers.CharField(required=False, allow_blank=True, default="")


class CancelSessionSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


def _validate_resolution(uploaded):
    min_w = getattr(settings, "IMAGE_UPLOAD_MIN_WIDTH", 64)
    min_h = getattr(settings, "IMAGE_UPLOAD_MIN_HEIGHT", 64)
    max_w = getattr(settings, "IMAGE_UPLOAD_MAX_WIDTH", 8192)
    max_h = getattr(settings, "IMAGE_UPLOAD_MAX_HEIGHT", 8192)
    limits = {
        "min_width": int(min_w),
        "min_height": int(min_h),
        "max_width": int(max_w),
        "max_height": int(max_h),
    }
    try:
        uploaded.seek(0)
        img = Image.open(uploaded)
        img.verify()
        # verify() leaves the image unusable; reopen for the size.
        uploaded.seek(0)
        width, height = Image.open(uploaded).size
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        raise serializers.ValidationError({
            "message": "Upload a valid image. The file appears invalid, too large, or corrupted.",
            "limits": limits,
        })
    finally:
        uploaded.seek(0)
    if width < min_w or height < min_h or width > max_w or height > max_h:
        raise serializers.ValidationError({
            "message": "Image resolution out of allowed range.",
            "limits": limits,
            "actual": {"width": int(width), "height": int(height)},
        })
    return uploaded


class CaptureRollSerializer(serializers.Serializer):
    """Multipart body for capturing one roll."""
    photo = serializers.FileField(
        required=False, help_text="Label photo. Omit for a manual entry.")
    quality = serializers.CharField(max_length=64, help_text="Quality code the counter read.")
    color = serializers.CharField(max_length=64, allow_blank=True, required=False, default="")
    lot_number = serializers.CharField(max_length=64, allow_blank=True, required=False, default="")
    meters = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0.01"),
        help_text="Meters on the roll as entered by the counter.")
    capture_sequence = serializers.IntegerField(
        min_value=1, required=False,
        help_text="Client-side sequence. Assigned by the server when omitted.")
    is_manual_entry = serializers.BooleanField(required=False, default=False)
    skip_ocr = serializers.BooleanField(
        required=False, default=False, help_text="Store the photo without reading the label.")

    def validate_photo(self, value):
        return _validate_resolution(value)


class RollListQuerySerializer(serializers.Serializer):
    filter = serializers.ChoiceField(choices=RollFilter.values, required=False, default=RollFilter.ALL)
    sort = serializers.ChoiceField(choices=sorted(SORT_FIELDS), required=False, allow_null=True, default=None)
    order = serializers.ChoiceField(choices=["asc", "desc"], required=False, default="asc")
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    page_size = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)


class BulkApproveSerializer(serializers.Serializer):
    roll_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=True,
        help_text="Roll ids to approve; rolls no longer pending are skipped.",
    )


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class EditRollSerializer(serializers.Serializer):
    """Reviewer overrides. A null or blank value clears that override."""
    quality = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    color = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    lot_number = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    meters = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0.01"), required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide at least one field to change.")
        return attrs


class ReconciliationSerializer(serializers.Serializer):
    session = CountSessionSerializer()
    roll_count = serializers.IntegerField()
    total_meters = serializers.DecimalField(max_digits=14, decimal_places=2)
    transactions_posted = serializers.IntegerField()
