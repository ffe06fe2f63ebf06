# tests/test_accounts.py
"""
Tests for the accounts module.

Tests cover:
- Sign-up atomicity (no orphaned organization)
- Sign-in / sign-out
- Session view
- Organization and profile updates, last-admin rule
- Actor resolution
"""

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework_simplejwt.tokens import AccessToken, RefreshToken

from accounts.authz import actor_for_user, require_admin
from accounts.commands import (
    get_current_session,
    sign_in,
    sign_out,
    sign_up,
    update_organization,
    update_profile,
)
from accounts.models import Organization, Profile


User = get_user_model()


@pytest.mark.django_db
class TestSignUp:
    def test_creates_user_organization_and_admin_profile(self):
        result = sign_up("New@Example.com ", "s3cretpass", "Nia New", "Nia Design")
        assert result.success, result.error

        user = result.data["user"]
        profile = result.data["profile"]
        assert user.email == "new@example.com"
        assert profile.role == Profile.Role.ADMIN
        assert profile.organization == result.data["organization"]
        assert profile.full_name == "Nia New"

        access = AccessToken(result.data["tokens"]["access"])
        assert access["org_id"] == result.data["organization"].pk

    def test_failure_leaves_no_organization_behind(self, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("profile insert failed")

        monkeypatch.setattr(Profile.objects, "create", boom)

        with pytest.raises(RuntimeError):
            sign_up("fail@example.com", "s3cretpass", "", "Ghost Org")

        assert not Organization.objects.filter(name="Ghost Org").exists()
        assert not User.objects.filter(email="fail@example.com").exists()

    def test_duplicate_email_rejected(self, admin_user):
        result = sign_up(admin_user.email, "s3cretpass", "", "Dup Org")
        assert not result.success
        assert "already exists" in result.error
        assert not Organization.objects.filter(name="Dup Org").exists()

    @pytest.mark.parametrize("password,org_name", [("short", "Org"), ("longenough", "  ")])
    def test_validation(self, password, org_name):
        result = sign_up("v@example.com", password, "", org_name)
        assert not result.success


@pytest.mark.django_db
class TestSignInOut:
    def test_sign_in_issues_org_bound_tokens(self, admin_user, organization):
        result = sign_in("ADMIN@acme.test", "testpass123")
        assert result.success, result.error
        refresh = RefreshToken(result.data["tokens"]["refresh"])
        assert refresh["org_id"] == organization.pk
        assert refresh["role"] == "admin"

    def test_wrong_password(self, admin_user):
        result = sign_in("admin@acme.test", "wrong")
        assert not result.success
        assert result.error == "Invalid credentials"

    def test_user_without_profile(self, db):
        User.objects.create_user(email="loner@example.com", password="testpass123")
        result = sign_in("loner@example.com", "testpass123")
        assert not result.success

    def test_sign_out_blacklists_refresh_token(self, admin_user):
        tokens = sign_in("admin@acme.test", "testpass123").data["tokens"]
        assert sign_out(tokens["refresh"]).success
        # A blacklisted token cannot be blacklisted again
        assert not sign_out(tokens["refresh"]).success

    def test_sign_out_invalid_token(self, db):
        result = sign_out("not-a-token")
        assert not result.success
        assert result.error == "Invalid token"


@pytest.mark.django_db
class TestSession:
    def test_current_session(self, admin_user):
        session = get_current_session(admin_user)
        assert session.user_id == admin_user.pk
        assert session.email == "admin@acme.test"
        assert session.profile.role == Profile.Role.ADMIN

    def test_anonymous_has_no_session(self):
        from django.contrib.auth.models import AnonymousUser

        assert get_current_session(AnonymousUser()) is None
        assert get_current_session(None) is None


@pytest.mark.django_db
class TestOrganizationAndProfiles:
    def test_admin_renames_organization(self, admin_actor):
        result = update_organization(admin_actor, name="Acme Studio Ltd")
        assert result.success
        assert result.data.name == "Acme Studio Ltd"

    def test_user_cannot_rename_organization(self, user_actor):
        with pytest.raises(PermissionDenied):
            update_organization(user_actor, name="Hijack")

    def test_member_edits_own_name(self, user_actor):
        result = update_profile(user_actor, user_actor.profile.pk, full_name="Uma U.")
        assert result.success
        assert result.data.full_name == "Uma U."

    def test_member_cannot_change_own_role(self, user_actor):
        with pytest.raises(PermissionDenied):
            update_profile(user_actor, user_actor.profile.pk, role="admin")

    def test_admin_promotes_member(self, admin_actor, user_actor):
        result = update_profile(admin_actor, user_actor.profile.pk, role="admin")
        assert result.success
        assert result.data.role == Profile.Role.ADMIN

    def test_last_admin_cannot_be_demoted(self, admin_actor):
        result = update_profile(admin_actor, admin_actor.profile.pk, role="user")
        assert not result.success
        assert "at least one admin" in result.error

    def test_profile_of_other_organization_not_found(self, admin_actor, other_actor):
        with pytest.raises(Http404):
            update_profile(admin_actor, other_actor.profile.pk, full_name="x")
        other_actor.profile.refresh_from_db()
        assert other_actor.profile.full_name != "x"


@pytest.mark.django_db
class TestActorResolution:
    def test_actor_for_user(self, admin_user, organization):
        actor = actor_for_user(admin_user)
        assert actor.organization == organization
        assert actor.is_admin
        require_admin(actor)

    def test_user_without_profile_is_denied(self, db):
        loner = User.objects.create_user(email="loner@example.com", password="testpass123")
        with pytest.raises(PermissionDenied):
            actor_for_user(loner)

    def test_regular_user_is_not_admin(self, user_actor):
        with pytest.raises(PermissionDenied):
            require_admin(user_actor)
