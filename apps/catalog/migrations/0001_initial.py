import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("sellers", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=255)),
                ("sku", models.CharField(db_index=True, max_length=100, unique=True)),
                ("image_url", models.URLField(blank=True)),
                ("price_in_pesewas", models.PositiveIntegerField()),
                ("stock_quantity", models.IntegerField(default=0)),
                ("track_inventory", models.BooleanField(default=True)),
                ("allow_backorder", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "seller",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="products",
                        to="sellers.sellerprofile",
                    ),
                ),
            ],
            options={
                "db_table": "products",
                "indexes": [
                    models.Index(fields=["seller", "is_active"], name="product_seller_active_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            models.Q(("track_inventory", False))
                            | models.Q(("allow_backorder", True))
                            | models.Q(("stock_quantity__gte", 0))
                        ),
                        name="product_stock_non_negative",
                    ),
                ],
            },
        ),
    ]
