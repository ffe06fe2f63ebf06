# tests/conftest.py
"""
Pytest fixtures for ClientLedger tests.

- Two organizations, so every tenant test can check the boundary
- Admin and regular members with profiles and ActorContexts
- API clients authenticated directly (force_authenticate)
- A client record and an invoice built through the command layer
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from accounts.authz import ActorContext
from accounts.models import Organization, Profile
from billing.commands import create_client, create_invoice


User = get_user_model()


@pytest.fixture(autouse=True, scope="session")
def _testing_settings(django_db_setup, django_db_blocker):
    """Ensure test-only settings are enabled."""
    from django.conf import settings

    settings.TESTING = True
    settings.RLS_BYPASS = True
    with django_db_blocker.unblock():
        from django.db import connection

        from accounts import rls

        rls.set_rls_bypass(True, conn=connection)


@pytest.fixture(autouse=True)
def _clear_throttle_cache():
    """Throttle counters live in the default cache; start every test clean."""
    cache.clear()
    yield
    cache.clear()


# =============================================================================
# Organization & User Fixtures
# =============================================================================

def _member(organization, email, role, full_name=""):
    user = User.objects.create_user(email=email, password="testpass123")
    profile = Profile.objects.create(
        user=user,
        organization=organization,
        email=email,
        full_name=full_name,
        role=role,
    )
    return user, profile


@pytest.fixture
def organization(db):
    return Organization.objects.create(name="Acme Studio")


@pytest.fixture
def second_organization(db):
    """A second tenant for isolation tests."""
    return Organization.objects.create(name="Other Agency")


@pytest.fixture
def admin_user(organization):
    user, _ = _member(organization, "admin@acme.test", Profile.Role.ADMIN, "Ada Admin")
    return user


@pytest.fixture
def regular_user(organization):
    user, _ = _member(organization, "user@acme.test", Profile.Role.USER, "Uma User")
    return user


@pytest.fixture
def other_admin_user(second_organization):
    user, _ = _member(second_organization, "admin@other.test", Profile.Role.ADMIN, "Oscar Other")
    return user


# =============================================================================
# Actor Context Fixtures
# =============================================================================

def _actor(user):
    profile = Profile.objects.select_related("organization").get(user=user)
    return ActorContext(user=user, organization=profile.organization, profile=profile)


@pytest.fixture
def admin_actor(admin_user):
    return _actor(admin_user)


@pytest.fixture
def user_actor(regular_user):
    return _actor(regular_user)


@pytest.fixture
def other_actor(other_admin_user):
    return _actor(other_admin_user)


# =============================================================================
# API Clients
# =============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated client."""
    return APIClient()


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def user_client(regular_user):
    client = APIClient()
    client.force_authenticate(user=regular_user)
    return client


@pytest.fixture
def other_client(other_admin_user):
    client = APIClient()
    client.force_authenticate(user=other_admin_user)
    return client


# =============================================================================
# Billing Fixtures
# =============================================================================

@pytest.fixture
def customer(admin_actor):
    """A client of the organization (named to avoid Django's `client` fixture)."""
    result = create_client(admin_actor, name="Globex", email="billing@globex.test", company="Globex Corp")
    assert result.success, result.error
    return result.data


@pytest.fixture
def invoice(admin_actor, customer):
    """
    Sent invoice with two lines at 10% tax:
    2 x 50.00 + 1 x 25.00 = 125.00 subtotal, 12.50 tax, 137.50 total.
    """
    result = create_invoice(
        admin_actor,
        client_id=customer.pk,
        issue_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
        status="sent",
        tax_rate=Decimal("10"),
        line_items=[
            {"description": "Design", "quantity": Decimal("2"), "unit_price": Decimal("50.00")},
            {"description": "Hosting", "quantity": Decimal("1"), "unit_price": Decimal("25.00")},
        ],
    )
    assert result.success, result.error
    return result.data


@pytest.fixture
def due_soon():
    return date.today() + timedelta(days=30)
