from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from core.views import require_tenant, scoped_queryset_for_user, uuid_query_param
from inventory.models import Category, InventoryItem, Shape
from inventory.serializers import (
    CategorySerializer,
    InventoryItemCreateSerializer,
    InventoryItemSerializer,
    RestingStatusSerializer,
    ShapeSerializer,
)
from inventory.services import (
    active_items,
    available_shape_names,
    change_resting_status,
    create_shape,
    delete_shape,
    sellable_items,
)
from recycle_bin.services import soft_delete_category, soft_delete_inventory_item


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            tenant=getattr(instance, "tenant", None),
        )

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )


class CategoryViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "category.view",
        "retrieve": "category.view",
        "create": "category.manage",
        "update": "category.manage",
        "partial_update": "category.manage",
        "destroy": "category.manage",
    }
    audit_entity = "category"

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).filter(is_deleted=False).order_by("name")

    def perform_create(self, serializer):
        instance = serializer.save(tenant=require_tenant(self.request.user))
        self._audit(action="category.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        entry = soft_delete_category(instance, user=self.request.user)
        self._audit(action="category.delete", instance=instance, before_snapshot=before_snapshot, after_snapshot={"recycle_bin_entry_id": entry.id})


class ShapeViewSet(
    AuditedMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Shape.objects.all()
    serializer_class = ShapeSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "shape.view",
        "retrieve": "shape.view",
        "names": "shape.view",
        "create": "shape.manage",
        "destroy": "shape.delete",
    }
    audit_entity = "shape"

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).filter(is_deleted=False).order_by("name")

    def perform_create(self, serializer):
        instance = create_shape(tenant=require_tenant(self.request.user), name=serializer.validated_data["name"])
        serializer.instance = instance
        self._audit(action="shape.create", instance=instance, after_snapshot=serializer.data)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        delete_shape(instance, user=self.request.user)
        self._audit(action="shape.delete", instance=instance, before_snapshot=before_snapshot)

    @action(detail=False, methods=["get"], url_path="names")
    def names(self, request):
        """Every shape the tenant can stock: the standard cuts plus its own."""
        return Response({"results": available_shape_names(require_tenant(request.user))})


class InventoryItemViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = InventoryItem.objects.select_related("category").prefetch_related("shapes")
    serializer_class = InventoryItemSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "sellable": "inventory.view",
        "create": "inventory.manage",
        "update": "inventory.manage",
        "partial_update": "inventory.manage",
        "set_status": "inventory.manage",
        "destroy": "inventory.delete",
    }
    audit_entity = "inventory"

    def get_queryset(self):
        qs = active_items(scoped_queryset_for_user(super().get_queryset(), self.request.user))
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        category_id = uuid_query_param(self.request, "category")
        if category_id:
            qs = qs.filter(category_id=category_id)
        if params.get("shape_mode"):
            qs = qs.filter(shape_mode=params["shape_mode"])
        if params.get("search"):
            qs = qs.filter(serial_number__icontains=params["search"].strip())
        return qs.order_by("-created_at")

    def get_serializer_class(self):
        if self.action == "create":
            return InventoryItemCreateSerializer
        return super().get_serializer_class()

    def create(self, request, *args, **kwargs):
        require_tenant(request.user)
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = serializer.save()
        payload = InventoryItemSerializer(item, context=self.get_serializer_context()).data
        self._audit(action="inventory.create", instance=item, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        entry = soft_delete_inventory_item(instance, user=self.request.user)
        self._audit(action="inventory.delete", instance=instance, before_snapshot=before_snapshot, after_snapshot={"recycle_bin_entry_id": entry.id})

    @action(detail=False, methods=["get"], url_path="sellable")
    def sellable(self, request):
        qs = sellable_items(self.get_queryset())
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(qs, many=True).data)

    @action(detail=True, methods=["post"], url_path="status")
    def set_status(self, request, pk=None):
        item = self.get_object()
        serializer = RestingStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = self.get_serializer(item).data
        item = change_resting_status(
            tenant=item.tenant,
            item_id=item.id,
            resting_status=serializer.validated_data["resting_status"],
        )
        after_snapshot = self.get_serializer(item).data
        self._audit(action="inventory.status", instance=item, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response(after_snapshot)
