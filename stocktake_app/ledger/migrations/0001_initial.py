from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="LedgerTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("transaction_type", models.CharField(
                    choices=[("STOCK_ADJUSTMENT", "Stock adjustment")],
                    default="STOCK_ADJUSTMENT", max_length=32,
                )),
                ("idempotency_key", models.CharField(max_length=128, unique=True)),
                ("source_session_id", models.BigIntegerField(db_index=True)),
                ("source_roll_id", models.BigIntegerField(blank=True, null=True)),
                ("quality", models.CharField(blank=True, default="", max_length=64)),
                ("color", models.CharField(blank=True, default="", max_length=64)),
                ("lot_number", models.CharField(blank=True, default="", max_length=64)),
                ("meters", models.DecimalField(decimal_places=2, max_digits=10)),
                ("created_by", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="SessionReconciliation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("session_id", models.BigIntegerField(unique=True)),
                ("roll_count", models.PositiveIntegerField()),
                ("total_meters", models.DecimalField(decimal_places=2, max_digits=14)),
                ("reconciled_by", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
