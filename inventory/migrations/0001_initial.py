import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

SHAPE_CHOICES = [
    ("Round", "Round"),
    ("Oval", "Oval"),
    ("Emerald", "Emerald"),
    ("Princess", "Princess"),
    ("Marquise", "Marquise"),
    ("Pear", "Pear"),
    ("Cushion", "Cushion"),
    ("Asscher", "Asscher"),
    ("Radiant", "Radiant"),
    ("Heart", "Heart"),
    ("Baguette", "Baguette"),
    ("Trillion", "Trillion"),
    ("Briolette", "Briolette"),
    ("Rose Cut", "Rose Cut"),
]

STATUS_CHOICES = [
    ("in_stock", "In Stock"),
    ("pending", "Pending"),
    ("partially_sold", "Partially Sold"),
    ("sold", "Sold"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100)),
                ("code", models.CharField(max_length=10)),
                ("description", models.CharField(blank=True, default="", max_length=500)),
                ("is_deleted", models.BooleanField(default=False)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "deleted_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                ("tenant", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.tenant")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["tenant", "is_deleted"], name="category_tenant_deleted_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(is_deleted=False),
                        fields=("tenant", "name"),
                        name="uniq_active_category_name",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="InventoryItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("serial_number", models.CharField(max_length=64)),
                (
                    "shape_mode",
                    models.CharField(choices=[("single", "Single"), ("mix", "Mix")], default="single", max_length=8),
                ),
                ("single_shape", models.CharField(blank=True, choices=SHAPE_CHOICES, max_length=32, null=True)),
                ("total_pieces", models.PositiveIntegerField(default=0)),
                ("total_weight", models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=12)),
                ("available_pieces", models.PositiveIntegerField(default=0)),
                ("available_weight", models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=12)),
                (
                    "weight_unit",
                    models.CharField(choices=[("carat", "Carat"), ("gram", "Gram")], default="carat", max_length=8),
                ),
                ("status", models.CharField(choices=STATUS_CHOICES, default="in_stock", max_length=16)),
                ("resting_status", models.CharField(choices=STATUS_CHOICES, default="in_stock", max_length=16)),
                ("purchase_code", models.CharField(blank=True, default="", max_length=64)),
                ("sale_code", models.CharField(blank=True, default="", max_length=64)),
                ("certification", models.CharField(blank=True, default="", max_length=255)),
                ("location", models.CharField(blank=True, default="", max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("length", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ("width", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ("height", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                (
                    "dimension_unit",
                    models.CharField(choices=[("mm", "mm"), ("cm", "cm")], default="mm", max_length=2),
                ),
                ("version", models.PositiveIntegerField(default=0)),
                ("is_deleted", models.BooleanField(default=False)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "category",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="items",
                        to="inventory.category",
                    ),
                ),
                (
                    "deleted_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                ("tenant", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.tenant")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["tenant", "is_deleted", "status"], name="item_tenant_deleted_status_idx"),
                    models.Index(fields=["category", "is_deleted"], name="item_category_deleted_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("tenant", "serial_number"), name="uniq_item_tenant_serial"),
                    models.CheckConstraint(
                        condition=models.Q(available_pieces__lte=models.F("total_pieces")),
                        name="item_available_pieces_le_total",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(available_weight__gte=0)
                        & models.Q(available_weight__lte=models.F("total_weight")),
                        name="item_available_weight_le_total",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ShapeBucket",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("shape_name", models.CharField(choices=SHAPE_CHOICES, max_length=32)),
                ("position", models.PositiveSmallIntegerField(default=0)),
                ("total_pieces", models.PositiveIntegerField(default=0)),
                ("total_weight", models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=12)),
                ("available_pieces", models.PositiveIntegerField(default=0)),
                ("available_weight", models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=12)),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="shapes",
                        to="inventory.inventoryitem",
                    ),
                ),
            ],
            options={
                "ordering": ["position", "shape_name"],
                "constraints": [
                    models.UniqueConstraint(fields=("item", "shape_name"), name="uniq_bucket_item_shape"),
                    models.CheckConstraint(
                        condition=models.Q(available_pieces__lte=models.F("total_pieces")),
                        name="bucket_available_pieces_le_total",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(available_weight__gte=0)
                        & models.Q(available_weight__lte=models.F("total_weight")),
                        name="bucket_available_weight_le_total",
                    ),
                ],
            },
        ),
    ]
