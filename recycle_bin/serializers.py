from rest_framework import serializers

from recycle_bin.models import RecycleBinEntry


class RecycleBinEntrySerializer(serializers.ModelSerializer):
    deleted_by_username = serializers.CharField(source="deleted_by.username", read_only=True, default=None)

    class Meta:
        model = RecycleBinEntry
        fields = [
            "id",
            "entity_type",
            "entity_id",
            "display_name",
            "entity_data",
            "deleted_by",
            "deleted_by_username",
            "deleted_at",
            "expires_at",
        ]
        read_only_fields = fields


class EntryIdsSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
