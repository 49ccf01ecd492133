from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from core.views import require_tenant, scoped_queryset_for_user
from recycle_bin.models import RecycleBinEntry
from recycle_bin.serializers import EntryIdsSerializer, RecycleBinEntrySerializer
from recycle_bin.services import empty_bin, purge_entries, restore_entries


class RecycleBinEntryViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = RecycleBinEntry.objects.select_related("deleted_by")
    serializer_class = RecycleBinEntrySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "recycle_bin.view",
        "retrieve": "recycle_bin.view",
        "restore": "recycle_bin.manage",
        "purge": "recycle_bin.manage",
        "empty": "recycle_bin.manage",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        entity_type = self.request.query_params.get("entity_type")
        if entity_type:
            if entity_type not in RecycleBinEntry.EntityType.values:
                raise ValidationError({"entity_type": f"Must be one of {', '.join(RecycleBinEntry.EntityType.values)}."})
            qs = qs.filter(entity_type=entity_type)
        return qs.order_by("-deleted_at")

    def _entry_ids(self, request):
        serializer = EntryIdsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data["ids"]

    def _audit(self, action, rows):
        for row in rows:
            create_audit_log_from_request(
                self.request,
                action=action,
                entity=row["entity_type"],
                entity_id=row["entity_id"],
                after_snapshot={"recycle_bin_entry_id": row["id"]},
            )

    @action(detail=False, methods=["post"], url_path="restore")
    def restore(self, request):
        tenant = require_tenant(request.user)
        restored = restore_entries(tenant=tenant, entry_ids=self._entry_ids(request))
        self._audit("recycle_bin.restore", restored)
        return Response({"restored": restored, "count": len(restored)})

    @action(detail=False, methods=["post"], url_path="purge")
    def purge(self, request):
        tenant = require_tenant(request.user)
        purged = purge_entries(tenant=tenant, entry_ids=self._entry_ids(request))
        self._audit("recycle_bin.purge", purged)
        return Response({"purged": purged, "count": len(purged)})

    @action(detail=False, methods=["post"], url_path="empty")
    def empty(self, request):
        tenant = require_tenant(request.user)
        purged = empty_bin(tenant=tenant)
        self._audit("recycle_bin.purge", purged)
        return Response({"purged": purged, "count": len(purged)})
