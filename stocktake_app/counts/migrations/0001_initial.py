import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CountSession",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("session_number", models.CharField(max_length=32, unique=True)),
                ("status", models.CharField(
                    choices=[
                        ("draft", "Draft"),
                        ("active", "Active"),
                        ("counting_complete", "Counting complete"),
                        ("reconciled", "Reconciled"),
                        ("cancelled", "Cancelled"),
                    ],
                    db_index=True, default="draft", max_length=20,
                )),
                ("started_by", models.CharField(db_index=True, max_length=64)),
                ("total_rolls_counted", models.PositiveIntegerField(default=0)),
                ("rolls_approved", models.PositiveIntegerField(default=0)),
                ("rolls_rejected", models.PositiveIntegerField(default=0)),
                ("rolls_pending_review", models.PositiveIntegerField(default=0)),
                ("rolls_recount_requested", models.PositiveIntegerField(default=0)),
                ("ocr_high_confidence_count", models.PositiveIntegerField(default=0)),
                ("ocr_medium_confidence_count", models.PositiveIntegerField(default=0)),
                ("ocr_low_confidence_count", models.PositiveIntegerField(default=0)),
                ("manual_entry_count", models.PositiveIntegerField(default=0)),
                ("notes", models.TextField(blank=True, default="")),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                ("reviewed_by", models.CharField(blank=True, default="", max_length=64)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("last_activity_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("reconciled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="CountRoll",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("capture_sequence", models.PositiveIntegerField()),
                ("photo_path", models.CharField(blank=True, default="", max_length=255)),
                ("photo_hash_sha256", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("captured_by", models.CharField(blank=True, default="", max_length=64)),
                ("counter_quality", models.CharField(blank=True, default="", max_length=64)),
                ("counter_color", models.CharField(blank=True, default="", max_length=64)),
                ("counter_lot_number", models.CharField(blank=True, default="", max_length=64)),
                ("counter_meters", models.DecimalField(decimal_places=2, max_digits=10)),
                ("ocr_quality", models.CharField(blank=True, max_length=64, null=True)),
                ("ocr_color", models.CharField(blank=True, max_length=64, null=True)),
                ("ocr_lot_number", models.CharField(blank=True, max_length=64, null=True)),
                ("ocr_meters", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("ocr_raw_text", models.TextField(blank=True, default="")),
                ("ocr_confidence_score", models.FloatField(blank=True, null=True)),
                ("ocr_confidence_level", models.CharField(
                    blank=True,
                    choices=[("high", "High"), ("medium", "Medium"), ("low", "Low")],
                    db_index=True, max_length=8, null=True,
                )),
                ("ocr_status", models.CharField(
                    choices=[
                        ("pending", "Pending"),
                        ("completed", "Completed"),
                        ("failed", "Failed"),
                        ("skipped", "Skipped"),
                    ],
                    default="pending", max_length=12,
                )),
                ("ocr_processed_at", models.DateTimeField(blank=True, null=True)),
                ("admin_quality", models.CharField(blank=True, max_length=64, null=True)),
                ("admin_color", models.CharField(blank=True, max_length=64, null=True)),
                ("admin_lot_number", models.CharField(blank=True, max_length=64, null=True)),
                ("admin_meters", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("admin_notes", models.TextField(blank=True, default="")),
                ("is_manual_entry", models.BooleanField(default=False)),
                ("is_not_label_warning", models.BooleanField(default=False)),
                ("is_possible_duplicate", models.BooleanField(default=False)),
                ("status", models.CharField(
                    choices=[
                        ("pending_review", "Pending review"),
                        ("approved", "Approved"),
                        ("rejected", "Rejected"),
                        ("recount_requested", "Recount requested"),
                    ],
                    db_index=True, default="pending_review", max_length=20,
                )),
                ("recount_reason", models.TextField(blank=True, default="")),
                ("reviewed_by", models.CharField(blank=True, default="", max_length=64)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("duplicate_of_roll", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+", to="counts.countroll",
                )),
                ("session", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="rolls", to="counts.countsession",
                )),
            ],
            options={
                "ordering": ["capture_sequence", "id"],
            },
        ),
        migrations.CreateModel(
            name="OcrRerunJob",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(
                    choices=[
                        ("queued", "Queued"),
                        ("running", "Running"),
                        ("completed", "Completed"),
                        ("cancelled", "Cancelled"),
                        ("failed", "Failed"),
                    ],
                    db_index=True, default="queued", max_length=12,
                )),
                ("requested_by", models.CharField(blank=True, default="", max_length=64)),
                ("roll_ids", models.JSONField(default=list)),
                ("total", models.PositiveIntegerField(default=0)),
                ("current", models.PositiveIntegerField(default=0)),
                ("success_count", models.PositiveIntegerField(default=0)),
                ("failure_count", models.PositiveIntegerField(default=0)),
                ("failures", models.JSONField(blank=True, default=list)),
                ("cancel_requested", models.BooleanField(default=False)),
                ("last_error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("session", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="rerun_jobs", to="counts.countsession",
                )),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.AddConstraint(
            model_name="countsession",
            constraint=models.UniqueConstraint(
                condition=models.Q(("status__in", ["draft", "active"])),
                fields=("started_by",),
                name="one_open_session_per_counter",
            ),
        ),
        migrations.AddConstraint(
            model_name="countroll",
            constraint=models.UniqueConstraint(
                fields=("session", "capture_sequence"), name="unique_capture_sequence_per_session",
            ),
        ),
        migrations.AddIndex(
            model_name="countroll",
            index=models.Index(fields=["session", "status"], name="countroll_session_status_idx"),
        ),
        migrations.AddIndex(
            model_name="countroll",
            index=models.Index(fields=["session", "ocr_confidence_level"], name="countroll_session_conf_idx"),
        ),
    ]
