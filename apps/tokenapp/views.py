"""
Token app views for Jan Seva
Citizen booking endpoints and official queue operations
"""

from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .api_docs import (
    book_token_docs,
    call_next_docs,
    cancel_token_docs,
    check_in_docs,
    complete_token_docs,
    my_tokens_docs,
    queue_forecast_docs,
    queue_snapshot_docs,
    skip_token_docs,
    token_detail_docs,
    token_position_docs,
)
from .filters import TokenFilter
from .models import Token
from .permissions import IsOfficial, IsTokenOwnerOrScopedOfficial, get_official_scope
from .serializers import (
    BookTokenSerializer,
    CheckInSerializer,
    HourlyLoadSerializer,
    PositionSerializer,
    QueueSnapshotSerializer,
    TokenSerializer,
)
from .services.queue_key import resolve
from .services.queue_scheduler import QueueScheduler, Slot


class SchedulerMixin:
    """Gives views a scheduler backed by the default store and notifier"""

    def get_scheduler(self):
        return QueueScheduler()

    def get_official(self, request):
        return str(request.user.pk), get_official_scope(request.user)


class BookTokenView(SchedulerMixin, APIView):
    """Book a token for the authenticated citizen"""

    permission_classes = [permissions.IsAuthenticated]

    @book_token_docs
    def post(self, request):
        serializer = BookTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        queue_key = resolve(data["office_id"], data["department_id"], data["appointment_date"])
        token = self.get_scheduler().book(
            str(request.user.pk),
            queue_key,
            Slot(data["appointment_date"], data.get("appointment_time")),
            document_refs=data.get("document_refs"),
            office_name=data.get("office_name", ""),
            department_name=data.get("department_name", ""),
            service_name=data.get("service_name", ""),
        )
        return Response(TokenSerializer(token).data, status=status.HTTP_201_CREATED)


class MyTokensView(generics.ListAPIView):
    """List the authenticated citizen's tokens, latest appointment first"""

    permission_classes = [permissions.IsAuthenticated]
    serializer_class = TokenSerializer
    filterset_class = TokenFilter

    def get_queryset(self):
        return Token.objects.filter(citizen_id=str(self.request.user.pk)).order_by(
            "-appointment_date", "-appointment_time"
        )

    @my_tokens_docs
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class TokenDetailView(SchedulerMixin, APIView):
    permission_classes = [permissions.IsAuthenticated, IsTokenOwnerOrScopedOfficial]

    def get_object(self, scheduler, pk):
        token = scheduler.store.get_by_reference(pk)
        self.check_object_permissions(self.request, token)
        return token

    @token_detail_docs
    def get(self, request, pk):
        token = self.get_object(self.get_scheduler(), pk)
        return Response(TokenSerializer(token).data)


class TokenPositionView(TokenDetailView):
    @token_position_docs
    def get(self, request, pk):
        scheduler = self.get_scheduler()
        token = self.get_object(scheduler, pk)
        position = scheduler.position(token.id)
        return Response(PositionSerializer(position).data)


class CancelTokenView(SchedulerMixin, APIView):
    """Cancel one of the citizen's own pending or waiting tokens"""

    permission_classes = [permissions.IsAuthenticated]

    @cancel_token_docs
    def post(self, request, pk):
        token = self.get_scheduler().cancel(pk, citizen_id=str(request.user.pk))
        return Response(TokenSerializer(token).data)


class CheckInView(SchedulerMixin, APIView):
    """Admit a citizen who arrived at the counter"""

    permission_classes = [permissions.IsAuthenticated, IsOfficial]

    @check_in_docs
    def post(self, request):
        serializer = CheckInSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        _, scope = self.get_official(request)
        token = self.get_scheduler().check_in(serializer.validated_data["token"], scope=scope)
        return Response(TokenSerializer(token).data)


class CallNextView(SchedulerMixin, APIView):
    """Call the next citizen of the official's queue for today"""

    permission_classes = [permissions.IsAuthenticated, IsOfficial]

    @call_next_docs
    def post(self, request):
        official_id, scope = self.get_official(request)
        scheduler = self.get_scheduler()

        token = scheduler.call_next(
            scope.queue_key_for(scheduler.service_date()), official_id, scope=scope
        )
        data = TokenSerializer(token).data if token is not None else None
        return Response({"token": data})


class SkipTokenView(SchedulerMixin, APIView):
    permission_classes = [permissions.IsAuthenticated, IsOfficial]

    @skip_token_docs
    def post(self, request, pk):
        official_id, scope = self.get_official(request)
        token = self.get_scheduler().skip(pk, official_id, scope=scope)
        return Response(TokenSerializer(token).data)


class CompleteTokenView(SchedulerMixin, APIView):
    permission_classes = [permissions.IsAuthenticated, IsOfficial]

    @complete_token_docs
    def post(self, request, pk):
        official_id, scope = self.get_official(request)
        token = self.get_scheduler().complete(pk, official_id, scope=scope)
        return Response(TokenSerializer(token).data)


class QueueSnapshotView(SchedulerMixin, APIView):
    """Dashboard view of the official's queue for today"""

    permission_classes = [permissions.IsAuthenticated, IsOfficial]

    @queue_snapshot_docs
    def get(self, request):
        _, scope = self.get_official(request)
        scheduler = self.get_scheduler()
        queue_key = scope.queue_key_for(scheduler.service_date())

        snapshot = scheduler.snapshot(queue_key)
        stats = scheduler.stats(queue_key)
        return Response(QueueSnapshotSerializer((snapshot, stats)).data)


class QueueForecastView(SchedulerMixin, APIView):
    """Hourly load of the official's department"""

    permission_classes = [permissions.IsAuthenticated, IsOfficial]

    @queue_forecast_docs
    def get(self, request):
        _, scope = self.get_official(request)
        loads = self.get_scheduler().forecast(scope.office_id, scope.department_id)
        return Response(HourlyLoadSerializer(loads, many=True).data)
