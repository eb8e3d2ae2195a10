from django.db import models


class TransactionType(models.TextChoices):
    STOCK_ADJUSTMENT = "STOCK_ADJUSTMENT", "Stock adjustment"


class LedgerTransaction(models.Model):
    """Append-only inventory movement. `idempotency_key` makes reposting a no-op."""

    transaction_type = models.CharField(
        max_length=32, choices=TransactionType.choices, default=TransactionType.STOCK_ADJUSTMENT
    )
    idempotency_key = models.CharField(max_length=128, unique=True)
    source_session_id = models.BigIntegerField(db_index=True)
    source_roll_id = models.BigIntegerField(null=True, blank=True)
    quality = models.CharField(max_length=64, blank=True, default="")
    color = models.CharField(max_length=64, blank=True, default="")
    lot_number = models.CharField(max_length=64, blank=True, default="")
    meters = models.DecimalField(max_digits=10, decimal_places=2)
    created_by = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.transaction_type} {self.idempotency_key} ({self.meters} m)"


class SessionReconciliation(models.Model):
    session_id = models.BigIntegerField(unique=True)
    roll_count = models.PositiveIntegerField()
    total_meters = models.DecimalField(max_digits=14, decimal_places=2)
    reconciled_by = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Session {self.session_id}: {self.roll_count} roll(s), {self.total_meters} m"
