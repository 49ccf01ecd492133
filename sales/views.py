from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from core.views import require_tenant, scoped_queryset_for_user, uuid_query_param
from sales.models import Invoice, SaleTransaction
from sales.serializers import (
    InvoiceCreateSerializer,
    InvoiceSerializer,
    InvoiceUpdateSerializer,
    SaleCreateSerializer,
    SaleTransactionSerializer,
    UndoSaleSerializer,
    WholeItemSaleSerializer,
)
from sales.services import (
    create_invoice,
    delete_invoice,
    lock_invoice,
    mark_invoice_paid,
    sell_inventory,
    sell_whole_item,
    undo_sale,
    update_invoice,
)

TRUTHY = {"1", "true", "yes", "on"}


class SaleTransactionViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = SaleTransaction.objects.select_related("sold_by", "cancelled_by").prefetch_related("lines")
    serializer_class = SaleTransactionSerializer
    lookup_value_regex = "[0-9a-fA-F-]{36}"
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "sales.view",
        "retrieve": "sales.view",
        "create": "sales.create",
        "whole_item": "sales.create",
        "undo": "sales.undo",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        params = self.request.query_params
        if self.action == "list":
            if params.get("include_cancelled", "").lower() not in TRUTHY:
                qs = qs.filter(cancelled=False)
            inventory_id = uuid_query_param(self.request, "inventory")
            if inventory_id:
                qs = qs.filter(inventory_item_id=inventory_id)
            if params.get("invoice_number"):
                qs = qs.filter(invoice_number=params["invoice_number"])
        return qs.order_by("-sold_at")

    def _audit(self, sale, *, action, before_snapshot=None):
        payload = self.get_serializer(sale).data
        create_audit_log_from_request(
            self.request,
            action=action,
            entity="sale",
            entity_id=sale.id,
            before_snapshot=before_snapshot,
            after_snapshot=payload,
            tenant=sale.tenant,
        )
        return payload

    def create(self, request, *args, **kwargs):
        tenant = require_tenant(request.user)
        serializer = SaleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        sale = sell_inventory(
            tenant=tenant,
            user=request.user,
            lines=serializer.line_requests(),
            **serializer.sale_kwargs(),
        )
        return Response(self._audit(sale, action="sale.create"), status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="whole-item")
    def whole_item(self, request):
        tenant = require_tenant(request.user)
        serializer = WholeItemSaleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        sale = sell_whole_item(
            tenant=tenant,
            user=request.user,
            price=serializer.validated_data["price"],
            **serializer.sale_kwargs(),
        )
        return Response(self._audit(sale, action="sale.create_full"), status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="undo")
    def undo(self, request, pk=None):
        tenant = require_tenant(request.user)
        serializer = UndoSaleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        sale = undo_sale(
            tenant=tenant,
            user=request.user,
            sale_id=pk,
            reason=serializer.validated_data["reason"],
        )
        return Response(self._audit(sale, action="sale.undo", before_snapshot={"cancelled": False}))


class InvoiceViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Invoice.objects.prefetch_related("lines__sale")
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "invoice.view",
        "retrieve": "invoice.view",
        "create": "invoice.manage",
        "partial_update": "invoice.manage",
        "lock": "invoice.manage",
        "mark_paid": "invoice.manage",
        "destroy": "invoice.manage",
    }

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("-created_at")

    def create(self, request, *args, **kwargs):
        tenant = require_tenant(request.user)
        serializer = InvoiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = create_invoice(
            tenant=tenant,
            user=request.user,
            sale_ids=serializer.validated_data["sale_ids"],
            tax_rate=serializer.validated_data["tax_rate"],
            notes=serializer.validated_data["notes"],
        )
        payload = self.get_serializer(invoice).data
        create_audit_log_from_request(
            request,
            action="invoice.create",
            entity="invoice",
            entity_id=invoice.id,
            after_snapshot=payload,
            tenant=tenant,
        )
        return Response(payload, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        invoice_id = instance.id
        delete_invoice(instance)
        create_audit_log_from_request(
            self.request,
            action="invoice.delete",
            entity="invoice",
            entity_id=invoice_id,
            before_snapshot=before_snapshot,
            tenant=instance.tenant,
        )

    def _audited_change(self, invoice, *, action, change):
        before_snapshot = self.get_serializer(invoice).data
        invoice = change(invoice)
        payload = self.get_serializer(invoice).data
        create_audit_log_from_request(
            self.request,
            action=action,
            entity="invoice",
            entity_id=invoice.id,
            before_snapshot=before_snapshot,
            after_snapshot=payload,
            tenant=invoice.tenant,
        )
        return Response(payload)

    def partial_update(self, request, *args, **kwargs):
        serializer = InvoiceUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._audited_change(
            self.get_object(),
            action="invoice.update",
            change=lambda invoice: update_invoice(invoice, **serializer.validated_data),
        )

    @action(detail=True, methods=["post"], url_path="lock")
    def lock(self, request, pk=None):
        return self._audited_change(
            self.get_object(),
            action="invoice.lock",
            change=lambda invoice: lock_invoice(invoice, user=request.user),
        )

    @action(detail=True, methods=["post"], url_path="mark-paid")
    def mark_paid(self, request, pk=None):
        return self._audited_change(
            self.get_object(),
            action="invoice.paid",
            change=lambda invoice: mark_invoice_paid(invoice, user=request.user),
        )
