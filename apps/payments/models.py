from django.db import models
from apps.utils.models import TimestampedModel


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SUCCESS = "SUCCESS", "Success"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentMethod(models.TextChoices):
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY", "Cash on Delivery"
    MOMO_MTN = "MOMO_MTN", "MTN Mobile Money"
    MOMO_VODAFONE = "MOMO_VODAFONE", "Vodafone Cash"
    MOMO_AIRTELTIGO = "MOMO_AIRTELTIGO", "AirtelTigo Money"
    CARD = "CARD", "Card"
    BANK_TRANSFER = "BANK_TRANSFER", "Bank Transfer"


class MomoNetwork(models.TextChoices):
    MTN = "MTN", "MTN"
    VODAFONE = "VODAFONE", "Vodafone"
    AIRTELTIGO = "AIRTELTIGO", "AirtelTigo"


MOMO_NETWORK_BY_METHOD = {
    PaymentMethod.MOMO_MTN: MomoNetwork.MTN,
    PaymentMethod.MOMO_VODAFONE: MomoNetwork.VODAFONE,
    PaymentMethod.MOMO_AIRTELTIGO: MomoNetwork.AIRTELTIGO,
}


class Payment(TimestampedModel):
    """
    One payment per order. Amount and method are a snapshot taken at checkout;
    the gateway fields are filled when the buyer is sent to pay.
    """
    order = models.OneToOneField("orders.Order", on_delete=models.CASCADE, related_name="payment")

    amount_in_pesewas = models.PositiveIntegerField()
    currency = models.CharField(max_length=3, default="GHS")
    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )

    # Gateway side (e.g. Paystack reference 'GH-20260116-7QX2-a1b2c3')
    external_reference = models.CharField(max_length=100, unique=True, null=True, blank=True)
    authorization_url = models.URLField(max_length=500, blank=True)
    gateway_provider = models.CharField(max_length=20, default="PAYSTACK")

    momo_phone_number = models.CharField(max_length=20, blank=True)
    momo_network = models.CharField(max_length=20, choices=MomoNetwork.choices, blank=True)

    initiated_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    # Audit fields
    error_message = models.TextField(blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "payments"
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
        ]

    def __str__(self):
        return f"{self.external_reference or self.order_id} | {self.amount_in_pesewas} | {self.status}"

    @property
    def is_cash(self):
        return self.method == PaymentMethod.CASH_ON_DELIVERY


class WebhookEvent(TimestampedModel):
    """
    Idempotency store for gateway callbacks, keyed '<event>:<id or reference>'.
    """
    event_key = models.CharField(max_length=150, unique=True, help_text="Event type + provider id")
    provider = models.CharField(max_length=20, default="PAYSTACK")
    event_type = models.CharField(max_length=50, blank=True)
    is_processed = models.BooleanField(default=False)
    payload = models.JSONField(default=dict)
    error = models.TextField(blank=True)

    class Meta:
        db_table = "payment_webhook_events"

    def __str__(self):
        return f"{self.provider} - {self.event_key}"
