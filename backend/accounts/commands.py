# accounts/commands.py
"""
Command layer for identity and organization operations.

ALL security-relevant mutations go through these commands:
- Sign-up (User + Organization + admin Profile, atomically)
- Sign-in / sign-out (JWT issuance and refresh-token blacklisting)
- Organization and profile updates

This ensures:
1. Consistent validation
2. Structured logging of every mutation
3. Single point of enforcement
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.contrib.auth import authenticate, get_user_model
from django.db import transaction
from django.http import Http404
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.authz import ActorContext, require_admin
from accounts.models import Organization, Profile
from accounts.rls import rls_bypass

User = get_user_model()
logger = logging.getLogger(__name__)


class CommandResult:
    """
    Wrapper for command results with success/failure info.

    Usage:
        result = sign_up(email, password, full_name, org_name)
        if result.success:
            user = result.data["user"]
        else:
            error_message = result.error
    """

    def __init__(self, success: bool, data=None, error: str = None):
        self.success = success
        self.data = data
        self.error = error

    @classmethod
    def ok(cls, data=None):
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str):
        return cls(success=False, error=error)

    def __repr__(self):
        if self.success:
            return f"CommandResult(ok, data={self.data!r})"
        return f"CommandResult(fail, error={self.error!r})"


@dataclass(frozen=True)
class SessionInfo:
    """What the rest of the system needs to know about the signed-in user."""

    user_id: int
    email: str
    profile: Optional[Profile]


def issue_tokens(user, profile: Profile) -> dict:
    """
    Issue a JWT pair bound to the user's organization.

    The org_id claim is what OrganizationRlsMiddleware trusts; it is never
    taken from request data.
    """
    refresh = RefreshToken.for_user(user)
    refresh["org_id"] = profile.organization_id
    refresh["role"] = profile.role
    return {"access": str(refresh.access_token), "refresh": str(refresh)}


# =============================================================================
# Session
# =============================================================================

def get_current_session(user) -> Optional[SessionInfo]:
    """Return the session view of `user`, or None for anonymous users."""
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return SessionInfo(user_id=user.pk, email=user.email, profile=user.get_profile())


def sign_in(email: str, password: str) -> CommandResult:
    """
    Authenticate with email + password and issue tokens.

    Returns:
        CommandResult with {"user", "profile", "tokens"} or an
        authentication error.
    """
    email = (email or "").lower().strip()
    with rls_bypass():
        user = authenticate(request=None, email=email, password=password)
        if user is None:
            logger.info("Sign-in rejected", extra={"email": email})
            return CommandResult.fail("Invalid credentials")

        profile = user.get_profile()
        if profile is None:
            logger.warning("Sign-in for user without profile", extra={"user_id": user.pk})
            return CommandResult.fail("Your account is not linked to an organization.")

    logger.info("User signed in", extra={"user_id": user.pk, "org_id": profile.organization_id})
    return CommandResult.ok({
        "user": user,
        "profile": profile,
        "tokens": issue_tokens(user, profile),
    })


@transaction.atomic
def sign_up(email: str, password: str, full_name: str, org_name: str) -> CommandResult:
    """
    Register a new user with a new organization.

    This is the ONLY way to create an organization. It atomically:
    1. Creates the user
    2. Creates the organization
    3. Creates the admin profile linking them

    Any failure rolls back all three, so a failed sign-up never leaves an
    orphaned organization behind.

    Args:
        email: User's email (must be unique)
        password: User's password (at least 8 characters)
        full_name: User's display name (optional)
        org_name: Name of the organization to create

    Returns:
        CommandResult with {"user", "organization", "profile", "tokens"}
    """
    email = (email or "").lower().strip()
    org_name = (org_name or "").strip()

    with rls_bypass():
        if not email:
            return CommandResult.fail("Email is required.")

        if User.objects.filter(email=email).exists():
            return CommandResult.fail(f"User with email '{email}' already exists.")

        if not org_name:
            return CommandResult.fail("Organization name is required.")

        if not password or len(password) < 8:
            return CommandResult.fail("Password must be at least 8 characters.")

        user = User.objects.create_user(email=email, password=password)
        organization = Organization.objects.create(name=org_name)
        profile = Profile.objects.create(
            user=user,
            organization=organization,
            email=email,
            full_name=(full_name or "").strip(),
            role=Profile.Role.ADMIN,
        )

    logger.info(
        "Organization registered",
        extra={"user_id": user.pk, "org_id": organization.pk},
    )
    return CommandResult.ok({
        "user": user,
        "organization": organization,
        "profile": profile,
        "tokens": issue_tokens(user, profile),
    })


def sign_out(refresh_token: str) -> CommandResult:
    """Blacklist the refresh token so it can no longer mint access tokens."""
    if not refresh_token:
        return CommandResult.fail("Refresh token required")
    try:
        RefreshToken(refresh_token).blacklist()
    except TokenError:
        return CommandResult.fail("Invalid token")
    return CommandResult.ok()


# =============================================================================
# Organization & Profiles
# =============================================================================

@transaction.atomic
def update_organization(actor: ActorContext, name: str = None) -> CommandResult:
    require_admin(actor)

    organization = Organization.objects.select_for_update().get(pk=actor.organization.pk)
    if name is not None:
        name = name.strip()
        if not name:
            return CommandResult.fail("Organization name is required.")
        organization.name = name
    organization.save()

    logger.info("Organization updated", extra={"org_id": organization.pk, "user_id": actor.user.pk})
    return CommandResult.ok(organization)


@transaction.atomic
def update_profile(
    actor: ActorContext,
    profile_id: int,
    full_name: str = None,
    role: str = None,
) -> CommandResult:
    """
    Update a member's profile.

    Members may change their own full_name; role changes and edits to other
    members need the admin role. The last admin cannot be demoted.
    """
    try:
        profile = Profile.objects.select_for_update().get(
            pk=profile_id,
            organization=actor.organization,
        )
    except Profile.DoesNotExist:
        raise Http404("Not found.")

    if profile.pk != actor.profile.pk or role is not None:
        require_admin(actor)

    if role is not None and role != profile.role:
        if role not in Profile.Role.values:
            return CommandResult.fail(f"Invalid role '{role}'.")
        if profile.role == Profile.Role.ADMIN:
            other_admins = Profile.objects.filter(
                organization=actor.organization,
                role=Profile.Role.ADMIN,
            ).exclude(pk=profile.pk)
            if not other_admins.exists():
                return CommandResult.fail("An organization needs at least one admin.")
        profile.role = role

    if full_name is not None:
        profile.full_name = full_name.strip()

    profile.save()
    logger.info(
        "Profile updated",
        extra={"profile_id": profile.pk, "org_id": actor.organization.pk, "role": profile.role},
    )
    return CommandResult.ok(profile)
