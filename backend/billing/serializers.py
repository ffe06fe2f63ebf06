# billing/serializers.py
"""
Serializers for the billing API.

Used for input validation and output formatting only; the business
logic happens in commands.py. Input serializers are plain Serializers
whose validated_data maps onto command keyword arguments.
"""

from decimal import Decimal

from rest_framework import serializers

from .financials import InvalidAmount, summarize_invoice, validate_payment_amount
from .models import Client, Invoice, InvoiceLineItem, Note, Payment, Project


class PaymentAmountField(serializers.Field):
    """Money amount parsed by validate_payment_amount (positive, finite, 2 dp)."""

    default_error_messages = {"invalid": "A valid payment amount is required."}

    def to_internal_value(self, data):
        try:
            return validate_payment_amount(data)
        except InvalidAmount as e:
            raise serializers.ValidationError(str(e))

    def to_representation(self, value):
        return f"{Decimal(value):.2f}"


def _money(**kwargs):
    return serializers.DecimalField(max_digits=14, decimal_places=2, **kwargs)


# =============================================================================
# Clients
# =============================================================================

class ClientSerializer(serializers.ModelSerializer):
    org_id = serializers.IntegerField(source="organization_id", read_only=True)

    class Meta:
        model = Client
        fields = (
            "id", "public_id", "org_id", "name", "email", "phone", "company",
            "address", "notes", "created_at", "updated_at",
        )
        read_only_fields = fields


class ClientInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True)
    company = serializers.CharField(max_length=255, required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


# =============================================================================
# Projects
# =============================================================================

class ProjectSerializer(serializers.ModelSerializer):
    org_id = serializers.IntegerField(source="organization_id", read_only=True)
    client_id = serializers.IntegerField(read_only=True)
    client_name = serializers.CharField(source="client.name", read_only=True)

    class Meta:
        model = Project
        fields = (
            "id", "public_id", "org_id", "client_id", "client_name", "name",
            "description", "status", "start_date", "end_date", "budget",
            "created_at", "updated_at",
        )
        read_only_fields = fields


class ProjectInputSerializer(serializers.Serializer):
    client_id = serializers.IntegerField()
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=Project.Status.choices, required=False)
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    budget = _money(required=False, allow_null=True, min_value=Decimal("0"))

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and end < start:
            raise serializers.ValidationError({"end_date": "End date cannot be before start date."})
        return attrs


# =============================================================================
# Line Items
# =============================================================================

class LineItemSerializer(serializers.ModelSerializer):
    invoice_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = InvoiceLineItem
        fields = (
            "id", "public_id", "invoice_id", "description", "quantity",
            "unit_price", "line_total", "created_at", "updated_at",
        )
        read_only_fields = fields


class LineItemInputSerializer(serializers.Serializer):
    """line_total is derived and never accepted as input."""

    description = serializers.CharField(max_length=500)
    quantity = serializers.DecimalField(
        max_digits=12, decimal_places=3, min_value=Decimal("0"), required=False, default=Decimal("1"),
    )
    unit_price = _money(min_value=Decimal("0"), required=False, default=Decimal("0.00"))


# =============================================================================
# Payments
# =============================================================================

class PaymentSerializer(serializers.ModelSerializer):
    invoice_id = serializers.IntegerField(read_only=True)
    created_by_email = serializers.EmailField(source="created_by.email", read_only=True)

    class Meta:
        model = Payment
        fields = (
            "id", "public_id", "invoice_id", "amount", "method", "reference",
            "paid_at", "created_by_email", "created_at",
        )
        read_only_fields = fields


class PaymentInputSerializer(serializers.Serializer):
    amount = PaymentAmountField()
    method = serializers.ChoiceField(choices=Payment.Method.choices, required=False)
    reference = serializers.CharField(max_length=255, required=False, allow_blank=True)
    paid_at = serializers.DateTimeField(required=False)


class PaymentSummarySerializer(serializers.Serializer):
    total = _money()
    paid = _money()
    outstanding = _money()
    is_settled = serializers.BooleanField()


# =============================================================================
# Invoices
# =============================================================================

class InvoiceSerializer(serializers.ModelSerializer):
    """List rows: header fields plus client and project names."""

    org_id = serializers.IntegerField(source="organization_id", read_only=True)
    client_id = serializers.IntegerField(read_only=True)
    client_name = serializers.CharField(source="client.name", read_only=True)
    project_id = serializers.IntegerField(read_only=True, allow_null=True)
    project_name = serializers.CharField(source="project.name", read_only=True)

    class Meta:
        model = Invoice
        fields = (
            "id", "public_id", "org_id", "invoice_number", "client_id", "client_name",
            "project_id", "project_name", "issue_date", "due_date", "status",
            "tax_rate", "subtotal", "tax_amount", "total", "notes",
            "created_at", "updated_at",
        )
        read_only_fields = fields


class InvoiceDetailSerializer(InvoiceSerializer):
    line_items = LineItemSerializer(many=True, read_only=True)
    payment_summary = serializers.SerializerMethodField()

    class Meta(InvoiceSerializer.Meta):
        fields = InvoiceSerializer.Meta.fields + ("line_items", "payment_summary")
        read_only_fields = fields

    def get_payment_summary(self, invoice):
        summary = summarize_invoice(invoice, invoice.payments.all())
        return PaymentSummarySerializer(summary).data


class InvoiceCreateSerializer(serializers.Serializer):
    client_id = serializers.IntegerField()
    project_id = serializers.IntegerField(required=False, allow_null=True)
    invoice_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    issue_date = serializers.DateField(required=False)
    due_date = serializers.DateField()
    status = serializers.ChoiceField(
        choices=[Invoice.Status.DRAFT, Invoice.Status.SENT],
        required=False,
    )
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2,
        min_value=Decimal("0"), max_value=Decimal("100"),
        required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    line_items = LineItemInputSerializer(many=True, required=False)

    def validate(self, attrs):
        issue, due = attrs.get("issue_date"), attrs.get("due_date")
        if issue and due and due < issue:
            raise serializers.ValidationError({"due_date": "Due date cannot be before issue date."})
        return attrs


class InvoiceUpdateSerializer(serializers.Serializer):
    client_id = serializers.IntegerField(required=False)
    project_id = serializers.IntegerField(required=False, allow_null=True)
    invoice_number = serializers.CharField(max_length=50, required=False)
    issue_date = serializers.DateField(required=False)
    due_date = serializers.DateField(required=False)
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2,
        min_value=Decimal("0"), max_value=Decimal("100"),
        required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Invoice.Status.choices)


# =============================================================================
# Notes
# =============================================================================

class NoteSerializer(serializers.ModelSerializer):
    org_id = serializers.IntegerField(source="organization_id", read_only=True)
    client_id = serializers.IntegerField(read_only=True, allow_null=True)
    project_id = serializers.IntegerField(read_only=True, allow_null=True)
    invoice_id = serializers.IntegerField(read_only=True, allow_null=True)
    author = serializers.SerializerMethodField()

    class Meta:
        model = Note
        fields = (
            "id", "public_id", "org_id", "title", "content", "client_id",
            "project_id", "invoice_id", "author", "created_at", "updated_at",
        )
        read_only_fields = fields

    def get_author(self, note):
        user = note.created_by
        if user is None:
            return None
        profile = user.get_profile()
        return {
            "email": user.email,
            "full_name": profile.full_name if profile else "",
        }


class NoteInputSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    content = serializers.CharField()
    client_id = serializers.IntegerField(required=False, allow_null=True)
    project_id = serializers.IntegerField(required=False, allow_null=True)
    invoice_id = serializers.IntegerField(required=False, allow_null=True)


# =============================================================================
# Dashboard
# =============================================================================

class RecentInvoiceSerializer(serializers.ModelSerializer):
    client_name = serializers.CharField(source="client.name", read_only=True)

    class Meta:
        model = Invoice
        fields = ("id", "invoice_number", "client_name", "status", "total", "issue_date", "due_date")
        read_only_fields = fields


class MonthlyRevenueSerializer(serializers.Serializer):
    month = serializers.CharField()
    revenue = _money()


class DashboardSerializer(serializers.Serializer):
    currency = serializers.CharField()
    total_clients = serializers.IntegerField()
    total_projects = serializers.IntegerField()
    active_projects = serializers.IntegerField()
    total_invoices = serializers.IntegerField()
    paid_invoices = serializers.IntegerField()
    total_revenue = _money()
    pending_revenue = _money()
    outstanding = _money()
    recent_invoices = RecentInvoiceSerializer(many=True)
    revenue_by_month = MonthlyRevenueSerializer(many=True)
