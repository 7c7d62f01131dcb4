from rest_framework import serializers

from .models import Token


class TokenSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source="get_status_display", read_only=True)

    class Meta:
        model = Token
        fields = [
            "id",
            "token_number",
            "citizen_id",
            "office_id",
            "department_id",
            "queue_key",
            "office_name",
            "department_name",
            "service_name",
            "status",
            "status_display",
            "appointment_date",
            "appointment_time",
            "document_refs",
            "created_at",
            "booked_at",
            "called_at",
            "served_by",
            "served_at",
            "updated_at",
        ]
        read_only_fields = fields


class PositionSerializer(serializers.Serializer):
    rank = serializers.IntegerField(read_only=True)
    estimated_wait_minutes = serializers.IntegerField(read_only=True)


class BookTokenSerializer(serializers.Serializer):
    office_id = serializers.CharField(max_length=64)
    department_id = serializers.CharField(max_length=64)
    appointment_date = serializers.DateField()
    appointment_time = serializers.TimeField(required=False, allow_null=True)
    document_refs = serializers.DictField(
        child=serializers.CharField(), required=False, default=dict
    )
    office_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    department_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    service_name = serializers.CharField(max_length=200, required=False, allow_blank=True)


class CheckInSerializer(serializers.Serializer):
    token = serializers.CharField(help_text="Token id or token number")


class QueueSnapshotSerializer(serializers.Serializer):
    """Serializes a ``QueueSnapshot`` together with the queue's stats"""

    def to_representation(self, instance):
        snapshot, stats = instance
        serving = snapshot.serving
        return {
            "queue_key": str(snapshot.queue_key),
            "serving": TokenSerializer(serving).data if serving is not None else None,
            "waiting": [
                dict(TokenSerializer(token).data, **position.to_dict())
                for token, position in snapshot.waiting
            ],
            "average_service_minutes": snapshot.average_service_minutes,
            "stats": stats,
        }


class HourlyLoadSerializer(serializers.Serializer):
    hour = serializers.CharField(source="label", read_only=True)
    served = serializers.IntegerField(read_only=True)
    average_service_minutes = serializers.IntegerField(read_only=True)
