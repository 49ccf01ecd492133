import uuid

from django.db import models
from django.utils import timezone

from core.models import Tenant, User


class RecycleBinEntry(models.Model):
    class EntityType(models.TextChoices):
        INVENTORY = "inventory", "Inventory"
        CATEGORY = "category", "Category"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT)
    entity_type = models.CharField(max_length=16, choices=EntityType.choices)
    entity_id = models.UUIDField()
    entity_data = models.JSONField()
    deleted_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    deleted_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField()

    class Meta:
        indexes = [
            models.Index(fields=["tenant", "entity_type", "deleted_at"], name="recycle_tenant_type_idx"),
            models.Index(fields=["expires_at"], name="recycle_expires_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["entity_type", "entity_id"], name="uniq_recycle_entity"),
        ]

    def __str__(self):
        return f"{self.entity_type}:{self.entity_id}"

    @property
    def display_name(self):
        data = self.entity_data or {}
        return data.get("serial_number") or data.get("name") or str(self.entity_id)
