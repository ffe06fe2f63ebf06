# accounts/urls.py
"""
URL configuration for identity and organization API.

Endpoints:
- /auth/ - Session (register, login, refresh, logout, me)
- /organization/ - The caller's organization
- /profiles/ - Organization members
"""

from django.urls import path

from .views import (
    # Auth
    RegisterView,
    LoginView,
    LogoutView,
    ClientLedgerTokenRefreshView,
    MeView,
    # Organization
    OrganizationView,
    ProfileListView,
    ProfileDetailView,
)

app_name = "accounts"

urlpatterns = [
    # ==========================================================================
    # Authentication
    # ==========================================================================
    path("auth/register/", RegisterView.as_view(), name="register"),
    path("auth/login/", LoginView.as_view(), name="login"),
    path("auth/refresh/", ClientLedgerTokenRefreshView.as_view(), name="token-refresh"),
    path("auth/logout/", LogoutView.as_view(), name="logout"),
    path("auth/me/", MeView.as_view(), name="me"),

    # ==========================================================================
    # Organization
    # ==========================================================================
    path("organization/", OrganizationView.as_view(), name="organization"),
    path("profiles/", ProfileListView.as_view(), name="profile-list"),
    path("profiles/<int:pk>/", ProfileDetailView.as_view(), name="profile-detail"),
]
