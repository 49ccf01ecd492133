from rest_framework import serializers

from sales.models import Invoice, InvoiceLine, SaleLine, SaleTransaction
from sales.services import Customer, SaleLineRequest


class SaleLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = SaleLine
        fields = ["position", "shape_name", "pieces", "weight", "price_per_unit", "line_total"]
        read_only_fields = fields


class SaleTransactionSerializer(serializers.ModelSerializer):
    inventory_id = serializers.UUIDField(source="inventory_item_id", read_only=True)
    lines = SaleLineSerializer(many=True, read_only=True)
    customer = serializers.SerializerMethodField()
    sold_by_username = serializers.CharField(source="sold_by.username", read_only=True, default=None)
    cancelled_by_username = serializers.CharField(source="cancelled_by.username", read_only=True, default=None)
    invoice_id = serializers.SerializerMethodField()

    class Meta:
        model = SaleTransaction
        fields = [
            "id",
            "inventory_id",
            "serial_number",
            "shape_mode",
            "is_full_sale",
            "lines",
            "total_pieces",
            "total_weight",
            "total_amount",
            "currency",
            "customer",
            "invoice_number",
            "invoice_id",
            "sold_by",
            "sold_by_username",
            "sold_at",
            "cancelled",
            "cancelled_at",
            "cancelled_by",
            "cancelled_by_username",
            "cancel_reason",
        ]
        read_only_fields = fields

    def get_customer(self, obj):
        return {"name": obj.customer_name, "email": obj.customer_email, "phone": obj.customer_phone}

    def get_invoice_id(self, obj):
        line = InvoiceLine.objects.filter(sale_id=obj.id).only("invoice_id").first()
        return str(line.invoice_id) if line else None


class CustomerInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")


class SaleLineInputSerializer(serializers.Serializer):
    shape_name = serializers.CharField(max_length=32, required=False, allow_null=True, allow_blank=True, default=None)
    pieces = serializers.IntegerField(min_value=0)
    weight = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=0)
    price_per_unit = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, required=False, allow_null=True)


class _SaleHeaderSerializer(serializers.Serializer):
    inventory_id = serializers.UUIDField()
    customer = CustomerInputSerializer(required=False)
    currency = serializers.CharField(max_length=3, required=False, default="USD")
    invoice_number = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    generate_invoice_number = serializers.BooleanField(required=False, default=False)

    def validate_currency(self, value):
        value = value.strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise serializers.ValidationError("Currency must be a three-letter code.")
        return value

    def validate(self, attrs):
        if attrs.get("generate_invoice_number") and attrs.get("invoice_number"):
            raise serializers.ValidationError({"invoice_number": "Supply an invoice number or ask for one to be generated, not both."})
        return attrs

    def sale_kwargs(self):
        data = self.validated_data
        return {
            "inventory_id": data["inventory_id"],
            "customer": Customer(**data.get("customer", {})),
            "currency": data["currency"],
            "invoice_number": data.get("invoice_number") or None,
            "generate_invoice_number": data["generate_invoice_number"],
        }


class SaleCreateSerializer(_SaleHeaderSerializer):
    lines = SaleLineInputSerializer(many=True, allow_empty=False)

    def line_requests(self):
        return [
            SaleLineRequest(
                shape_name=line.get("shape_name") or None,
                pieces=line["pieces"],
                weight=line["weight"],
                price_per_unit=line.get("price_per_unit"),
            )
            for line in self.validated_data["lines"]
        ]


class WholeItemSaleSerializer(_SaleHeaderSerializer):
    price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)


class UndoSaleSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class InvoiceLineSerializer(serializers.ModelSerializer):
    serial_number = serializers.CharField(source="sale.serial_number", read_only=True)

    class Meta:
        model = InvoiceLine
        fields = ["id", "sale", "serial_number", "amount"]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    lines = InvoiceLineSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "customer_name",
            "customer_email",
            "customer_phone",
            "currency",
            "subtotal",
            "tax_rate",
            "tax_amount",
            "total",
            "notes",
            "status",
            "paid_at",
            "is_locked",
            "locked_at",
            "locked_by",
            "lines",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InvoiceCreateSerializer(serializers.Serializer):
    sale_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    tax_rate = serializers.DecimalField(max_digits=6, decimal_places=4, min_value=0, required=False, default=0)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class InvoiceUpdateSerializer(serializers.Serializer):
    tax_rate = serializers.DecimalField(max_digits=6, decimal_places=4, min_value=0, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
