# tests/test_auth_api.py
"""
End-to-end tests for the session endpoints under /api/auth/.

These use real JWTs (no force_authenticate) so the organization
middleware and the token claims are exercised together.
"""

import json

import pytest
from rest_framework.test import APIClient

from accounts.models import Organization


def _bearer(access):
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
    return client


@pytest.mark.django_db
class TestRegisterAndLogin:
    def test_register_then_use_token(self):
        res = APIClient().post(
            "/api/auth/register/",
            {"email": "Owner@Studio.test", "password": "s3cretpass", "full_name": "Olu Owner", "org_name": "Studio"},
            format="json",
        )
        assert res.status_code == 201, res.data
        assert res.data["user"]["email"] == "owner@studio.test"
        assert res.data["profile"]["role"] == "admin"
        assert json.loads(res["X-Notifications"])[0]["message"] == "Account created successfully"

        client = _bearer(res.data["access"])
        me = client.get("/api/auth/me/")
        assert me.status_code == 200
        assert me.data["email"] == "owner@studio.test"
        assert me.data["profile"]["org_id"] == res.data["organization"]["id"]

        created = client.post("/api/billing/clients/", {"name": "First client"}, format="json")
        assert created.status_code == 201

    def test_register_rejects_blank_organization(self, db):
        res = APIClient().post(
            "/api/auth/register/",
            {"email": "x@studio.test", "password": "s3cretpass", "org_name": "   "},
            format="json",
        )
        assert res.status_code == 400
        assert Organization.objects.count() == 0

    def test_login_bad_password(self, admin_user):
        res = APIClient().post(
            "/api/auth/login/",
            {"email": "admin@acme.test", "password": "wrong-password"},
            format="json",
        )
        assert res.status_code == 401
        assert res.data == {"detail": "Invalid credentials"}

    def test_login_and_logout(self, admin_user, organization):
        res = APIClient().post(
            "/api/auth/login/",
            {"email": "admin@acme.test", "password": "testpass123"},
            format="json",
        )
        assert res.status_code == 200
        assert res.data["profile"]["org_id"] == organization.pk

        refresh = res.data["refresh"]
        assert APIClient().post("/api/auth/logout/", {"refresh": refresh}, format="json").status_code == 204

        again = APIClient().post("/api/auth/refresh/", {"refresh": refresh}, format="json")
        assert again.status_code == 401

    def test_me_requires_authentication(self, db):
        assert APIClient().get("/api/auth/me/").status_code == 401


@pytest.mark.django_db
class TestOrganizationEndpoints:
    def test_members_see_their_organization(self, user_client, organization):
        res = user_client.get("/api/organization/")
        assert res.status_code == 200
        assert res.data["name"] == organization.name

    def test_only_admin_renames(self, admin_client, user_client):
        assert user_client.patch("/api/organization/", {"name": "Nope"}, format="json").status_code == 403
        res = admin_client.patch("/api/organization/", {"name": "Acme Renamed"}, format="json")
        assert res.status_code == 200
        assert res.data["name"] == "Acme Renamed"

    def test_profiles_are_scoped_to_organization(self, admin_client, admin_user, regular_user, other_admin_user):
        emails = {p["email"] for p in admin_client.get("/api/profiles/").data}
        assert emails == {"admin@acme.test", "user@acme.test"}

    def test_profile_of_other_organization_is_404(self, admin_client, other_admin_user):
        res = admin_client.patch(
            f"/api/profiles/{other_admin_user.profile.pk}/",
            {"full_name": "x"},
            format="json",
        )
        assert res.status_code == 404
        assert res.data == {"detail": "Not found."}
        other_admin_user.profile.refresh_from_db()
        assert other_admin_user.profile.full_name == "Oscar Other"
