from rest_framework import serializers

from inventory import ledger as ledger_lib
from inventory.models import Category, InventoryItem, Shape, ShapeBucket
from inventory.services import DETAIL_FIELDS, create_inventory_item, duplicate_on_conflict, update_inventory_details


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "code", "description", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_name(self, value):
        name = value.strip().upper()
        if not name:
            raise serializers.ValidationError("Category name cannot be blank.")
        request = self.context.get("request")
        tenant_id = getattr(getattr(request, "user", None), "tenant_id", None)
        clash = Category.objects.filter(tenant_id=tenant_id, name=name, is_deleted=False)
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if clash.exists():
            raise serializers.ValidationError("A category with this name already exists.")
        return name

    def create(self, validated_data):
        with duplicate_on_conflict("A category with this name already exists.", name=validated_data.get("name")):
            return super().create(validated_data)

    def update(self, instance, validated_data):
        with duplicate_on_conflict("A category with this name already exists.", name=validated_data.get("name", instance.name)):
            return super().update(instance, validated_data)


class ShapeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Shape
        fields = ["id", "name", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_name(self, value):
        name = " ".join(value.split())
        if not name:
            raise serializers.ValidationError("Shape name cannot be blank.")
        return name


class ShapeBucketSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShapeBucket
        fields = ["shape_name", "position", "total_pieces", "total_weight", "available_pieces", "available_weight"]
        read_only_fields = fields


class InventoryItemSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True)
    shapes = ShapeBucketSerializer(many=True, read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            "id",
            "serial_number",
            "category",
            "category_name",
            "shape_mode",
            "single_shape",
            "shapes",
            "total_pieces",
            "total_weight",
            "available_pieces",
            "available_weight",
            "weight_unit",
            "status",
            "resting_status",
            "purchase_code",
            "sale_code",
            "certification",
            "location",
            "description",
            "length",
            "width",
            "height",
            "dimension_unit",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [field for field in fields if field not in DETAIL_FIELDS]

    def update(self, instance, validated_data):
        return update_inventory_details(instance, validated_data)


class ShapeInputSerializer(serializers.Serializer):
    shape_name = serializers.CharField(max_length=32)
    pieces = serializers.IntegerField(min_value=0)
    weight = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=0)


class InventoryItemCreateSerializer(serializers.Serializer):
    category = serializers.PrimaryKeyRelatedField(queryset=Category.objects.none())
    serial_number = serializers.CharField(max_length=64)
    shape_mode = serializers.ChoiceField(choices=InventoryItem.ShapeMode.choices)
    single_shape = serializers.CharField(max_length=32, required=False, allow_null=True)
    total_pieces = serializers.IntegerField(min_value=0, required=False, default=0)
    total_weight = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=0, required=False, default=0)
    shapes = ShapeInputSerializer(many=True, required=False)
    resting_status = serializers.ChoiceField(choices=ledger_lib.RESTING_STATUSES, required=False, default=ledger_lib.IN_STOCK)
    weight_unit = serializers.ChoiceField(choices=InventoryItem.WeightUnit.choices, required=False)
    purchase_code = serializers.CharField(max_length=64, required=False, allow_blank=True)
    sale_code = serializers.CharField(max_length=64, required=False, allow_blank=True)
    certification = serializers.CharField(max_length=255, required=False, allow_blank=True)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    length = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, required=False, allow_null=True)
    width = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, required=False, allow_null=True)
    height = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, required=False, allow_null=True)
    dimension_unit = serializers.ChoiceField(choices=InventoryItem.DimensionUnit.choices, required=False)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        request = self.context.get("request")
        tenant_id = getattr(getattr(request, "user", None), "tenant_id", None)
        self.fields["category"].queryset = Category.objects.filter(tenant_id=tenant_id, is_deleted=False)

    def validate_serial_number(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Serial number cannot be blank.")
        return value

    def validate(self, attrs):
        shapes = attrs.get("shapes") or []
        if attrs["shape_mode"] == ledger_lib.MIX:
            if not shapes:
                raise serializers.ValidationError({"shapes": "A mix item needs at least one shape."})
            names = [" ".join(shape["shape_name"].split()).casefold() for shape in shapes]
            if len(set(names)) != len(names):
                raise serializers.ValidationError({"shapes": "Shape names must be unique within an item."})
            if attrs.get("single_shape"):
                raise serializers.ValidationError({"single_shape": "Only single items carry a single shape label."})
        elif shapes:
            raise serializers.ValidationError({"shapes": "Single items do not take shape buckets."})
        return attrs

    def create(self, validated_data):
        request = self.context["request"]
        details = {field: validated_data[field] for field in DETAIL_FIELDS if field in validated_data}
        return create_inventory_item(
            tenant=request.user.tenant,
            category=validated_data["category"],
            serial_number=validated_data["serial_number"],
            shape_mode=validated_data["shape_mode"],
            total_pieces=validated_data.get("total_pieces", 0),
            total_weight=validated_data.get("total_weight", 0),
            shapes=validated_data.get("shapes"),
            single_shape=validated_data.get("single_shape"),
            resting_status=validated_data.get("resting_status", ledger_lib.IN_STOCK),
            **details,
        )


class RestingStatusSerializer(serializers.Serializer):
    resting_status = serializers.ChoiceField(choices=ledger_lib.RESTING_STATUSES)
