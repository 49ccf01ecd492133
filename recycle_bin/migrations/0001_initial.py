import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="RecycleBinEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "entity_type",
                    models.CharField(choices=[("inventory", "Inventory"), ("category", "Category")], max_length=16),
                ),
                ("entity_id", models.UUIDField()),
                ("entity_data", models.JSONField()),
                ("deleted_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("expires_at", models.DateTimeField()),
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
                    models.Index(fields=["tenant", "entity_type", "deleted_at"], name="recycle_tenant_type_idx"),
                    models.Index(fields=["expires_at"], name="recycle_expires_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("entity_type", "entity_id"), name="uniq_recycle_entity"),
                ],
            },
        ),
    ]
