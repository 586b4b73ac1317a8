from django.db.models import F, Prefetch
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.common.permissions import RolePermission
from apps.ledger import services
from apps.ledger.choices import CreditNoteStatus
from apps.ledger.models import CreditNote, Installment, Order, PaymentLine
from apps.ledger.serializers import (
    CreditNoteIssueSerializer,
    CreditNoteRedeemSerializer,
    CreditNoteSerializer,
    InstallmentApplySerializer,
    InstallmentSerializer,
    OrderOpenSerializer,
    OrderSerializer,
)

TRUTHY = {"1", "true", "yes"}


def _employee_id(validated_data, user):
    return validated_data.get("employee_id") or user.employee_id


def _installments_prefetch():
    return Prefetch("installments", queryset=Installment.objects.prefetch_related(
        Prefetch("payments", queryset=PaymentLine.objects.order_by("position"))
    ))


class OrderViewSet(viewsets.ModelViewSet):
    queryset = Order.objects.prefetch_related(_installments_prefetch()).order_by("-created_at")
    serializer_class = OrderSerializer
    permission_classes = [RolePermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["orders.view"],
        "retrieve": ["orders.view"],
        "create": ["orders.create"],
        "installments": ["installments.view"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        order_type = self.request.query_params.get("order_type")
        customer_id = self.request.query_params.get("customer_id")
        with_balance = self.request.query_params.get("with_balance")
        if order_type:
            queryset = queryset.filter(order_type=order_type)
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        if str(with_balance).lower() in TRUTHY:
            queryset = queryset.filter(collected__lt=F("total"))
        return queryset

    def get_serializer_class(self):
        if self.action == "create":
            return OrderOpenSerializer
        return OrderSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.open_order(
            order_type=data["order_type"],
            subtotal=data["subtotal"],
            breakdown=data["breakdown"],
            employee_id=_employee_id(data, request.user),
            declared_amount=data.get("declared_amount"),
            discount_pct=data.get("discount_pct") or 0,
            ring_kind=data["ring_kind"],
            customer_id=data.get("customer_id", ""),
            notes=data.get("notes", ""),
            actor=request.user,
        )
        order = self.get_queryset().get(pk=order.pk)
        return Response(OrderSerializer(order, context=self.get_serializer_context()).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"])
    def installments(self, request, pk=None):
        order = self.get_object()
        rows = order.installments.select_related("order").prefetch_related("payments").order_by("created_at")
        return Response(InstallmentSerializer(rows, many=True).data)


class InstallmentViewSet(viewsets.ModelViewSet):
    queryset = Installment.objects.select_related("order", "created_by").prefetch_related("payments").order_by("-created_at")
    serializer_class = InstallmentSerializer
    permission_classes = [RolePermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["installments.view"],
        "retrieve": ["installments.view"],
        "create": ["installments.create"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        order_type = self.request.query_params.get("order_type")
        order_id = self.request.query_params.get("order")
        if order_type:
            queryset = queryset.filter(order__order_type=order_type)
        if order_id:
            queryset = queryset.filter(order_id=order_id)
        return queryset

    def get_serializer_class(self):
        if self.action == "create":
            return InstallmentApplySerializer
        return InstallmentSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        installment = services.apply_installment(
            order_type=data["order_type"],
            order_id=data["order"],
            amount=data["amount"],
            breakdown=data["breakdown"],
            employee_id=_employee_id(data, request.user),
            actor=request.user,
        )
        installment = self.get_queryset().get(pk=installment.pk)
        return Response(InstallmentSerializer(installment).data, status=status.HTTP_201_CREATED)


class CreditNoteViewSet(viewsets.ModelViewSet):
    queryset = CreditNote.objects.select_related("origin_order").prefetch_related("redemptions").order_by("-created_at")
    serializer_class = CreditNoteSerializer
    permission_classes = [RolePermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["credit_notes.view"],
        "retrieve": ["credit_notes.view"],
        "create": ["credit_notes.issue"],
        "redeem": ["credit_notes.redeem"],
        "cancel": ["credit_notes.cancel"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        status_param = str(self.request.query_params.get("status", "")).upper()
        customer_id = self.request.query_params.get("customer_id")
        origin_order = self.request.query_params.get("origin_order")
        if status_param == CreditNoteStatus.CANCELLED:
            queryset = queryset.filter(cancelled=True)
        elif status_param == CreditNoteStatus.USED:
            queryset = queryset.filter(cancelled=False, total_used__gte=F("total_original"))
        elif status_param == CreditNoteStatus.AVAILABLE:
            queryset = queryset.filter(cancelled=False, total_used__lt=F("total_original"))
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        if origin_order:
            queryset = queryset.filter(origin_order_id=origin_order)
        return queryset

    def get_serializer_class(self):
        if self.action == "create":
            return CreditNoteIssueSerializer
        if self.action == "redeem":
            return CreditNoteRedeemSerializer
        return CreditNoteSerializer

    def _respond(self, note, status_code=status.HTTP_200_OK):
        note = self.get_queryset().get(pk=note.pk)
        return Response(CreditNoteSerializer(note).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        note = services.issue_credit_note(
            origin_order_type=data["origin_order_type"],
            origin_order_id=data["origin_order"],
            requested_amount=data["amount"],
            employee_id=_employee_id(data, request.user),
            customer_id=data.get("customer_id") or None,
            actor=request.user,
        )
        return self._respond(note, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def redeem(self, request, pk=None):
        serializer = CreditNoteRedeemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        note = services.redeem_credit_note(
            credit_note_id=pk,
            amount=data["amount"],
            reference_type=data.get("reference_type") or "manual",
            reference_id=data.get("reference_id", ""),
            actor=request.user,
        )
        return self._respond(note)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        note = services.cancel_credit_note(credit_note_id=pk, actor=request.user)
        return self._respond(note)
