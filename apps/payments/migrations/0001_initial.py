import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("amount_in_pesewas", models.PositiveIntegerField()),
                ("currency", models.CharField(default="GHS", max_length=3)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("CASH_ON_DELIVERY", "Cash on Delivery"),
                            ("MOMO_MTN", "MTN Mobile Money"),
                            ("MOMO_VODAFONE", "Vodafone Cash"),
                            ("MOMO_AIRTELTIGO", "AirtelTigo Money"),
                            ("CARD", "Card"),
                            ("BANK_TRANSFER", "Bank Transfer"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("SUCCESS", "Success"),
                            ("FAILED", "Failed"),
                            ("REFUNDED", "Refunded"),
                        ],
                        db_index=True,
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("external_reference", models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ("authorization_url", models.URLField(blank=True, max_length=500)),
                ("gateway_provider", models.CharField(default="PAYSTACK", max_length=20)),
                ("momo_phone_number", models.CharField(blank=True, max_length=20)),
                (
                    "momo_network",
                    models.CharField(
                        blank=True,
                        choices=[("MTN", "MTN"), ("VODAFONE", "Vodafone"), ("AIRTELTIGO", "AirtelTigo")],
                        max_length=20,
                    ),
                ),
                ("initiated_at", models.DateTimeField(blank=True, null=True)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                (
                    "order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "db_table": "payments",
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("event_key", models.CharField(help_text="Event type + provider id", max_length=150, unique=True)),
                ("provider", models.CharField(default="PAYSTACK", max_length=20)),
                ("event_type", models.CharField(blank=True, max_length=50)),
                ("is_processed", models.BooleanField(default=False)),
                ("payload", models.JSONField(default=dict)),
                ("error", models.TextField(blank=True)),
            ],
            options={
                "db_table": "payment_webhook_events",
            },
        ),
    ]
