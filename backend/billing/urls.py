# billing/urls.py
"""
URL configuration for the billing API (mounted at /api/billing/).

Endpoints:
- /clients/ - Client CRUD
- /projects/ - Project CRUD
- /invoices/ - Invoice CRUD, status transitions, export
- /invoices/<id>/line-items/, /line-items/<id>/ - Line items
- /invoices/<id>/payments/, /payments/<id>/ - Payments
- /notes/ - Note CRUD
- /dashboard/ - Organization statistics
"""

from django.urls import path

from .views import (
    ClientDetailView,
    ClientListCreateView,
    DashboardView,
    InvoiceDetailView,
    InvoiceExportView,
    InvoiceListCreateView,
    InvoiceStatusView,
    LineItemDetailView,
    LineItemListCreateView,
    NoteDetailView,
    NoteListCreateView,
    PaymentDetailView,
    PaymentListCreateView,
    ProjectDetailView,
    ProjectListCreateView,
)

app_name = "billing"

urlpatterns = [
    path("clients/", ClientListCreateView.as_view(), name="client-list"),
    path("clients/<int:pk>/", ClientDetailView.as_view(), name="client-detail"),

    path("projects/", ProjectListCreateView.as_view(), name="project-list"),
    path("projects/<int:pk>/", ProjectDetailView.as_view(), name="project-detail"),

    path("invoices/", InvoiceListCreateView.as_view(), name="invoice-list"),
    path("invoices/export/", InvoiceExportView.as_view(), name="invoice-export"),
    path("invoices/<int:pk>/", InvoiceDetailView.as_view(), name="invoice-detail"),
    path("invoices/<int:pk>/status/", InvoiceStatusView.as_view(), name="invoice-status"),
    path(
        "invoices/<int:invoice_pk>/line-items/",
        LineItemListCreateView.as_view(),
        name="invoice-line-items",
    ),
    path(
        "invoices/<int:invoice_pk>/payments/",
        PaymentListCreateView.as_view(),
        name="invoice-payments",
    ),

    path("line-items/<int:pk>/", LineItemDetailView.as_view(), name="line-item-detail"),
    path("payments/<int:pk>/", PaymentDetailView.as_view(), name="payment-detail"),

    path("notes/", NoteListCreateView.as_view(), name="note-list"),
    path("notes/<int:pk>/", NoteDetailView.as_view(), name="note-detail"),

    path("dashboard/", DashboardView.as_view(), name="dashboard"),
]
