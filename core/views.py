import logging

from django.db import connections
from rest_framework import serializers
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from core.serializers import CurrentUserSerializer, EmailOrUsernameTokenObtainPairSerializer

logger = logging.getLogger(__name__)


def scoped_queryset_for_user(queryset, user):
    if not user.is_authenticated:
        return queryset.none()

    if getattr(user, "tenant_id", None):
        return queryset.filter(tenant_id=user.tenant_id)

    if user.is_superuser:
        return queryset

    return queryset.none()


def uuid_query_param(request, name):
    """Parse an optional UUID filter, answering 400 instead of letting the ORM reject it."""
    value = request.query_params.get(name)
    if not value:
        return None
    try:
        return serializers.UUIDField().to_internal_value(value)
    except ValidationError as exc:
        raise ValidationError({name: exc.detail}) from None


def require_tenant(user):
    tenant = getattr(user, "tenant", None)
    if tenant is None:
        raise ValidationError("Authenticated user must belong to a tenant to change records.")
    return tenant


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class CurrentUserView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None)},
            status=503,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
