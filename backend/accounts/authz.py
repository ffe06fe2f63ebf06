# accounts/authz.py
"""
Authorization utilities for ClientLedger.

Provides:
- ActorContext: Immutable context for the current request
- resolve_actor: Extract actor context from request
- require_admin: Check the admin role and raise if not held

Roles gate mutations only. The isolation boundary between organizations
is the row-level policy (see accounts/rls.py) plus the organization filter
every command and read query applies.
"""

from dataclasses import dataclass
from django.core.exceptions import PermissionDenied
from rest_framework.exceptions import NotAuthenticated

from accounts.models import Organization, Profile


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable context for the current actor (user + organization).

    This is passed to commands and policies to provide context
    about who is performing an action and in which organization.

    Attributes:
        user: The authenticated user
        organization: The user's organization (tenant)
        profile: The user's profile in that organization
    """
    user: object  # User model
    organization: Organization
    profile: Profile

    @property
    def is_authenticated(self) -> bool:
        """Mirror Django's user.is_authenticated for compatibility."""
        return bool(getattr(self.user, "is_authenticated", False))

    @property
    def is_admin(self) -> bool:
        return self.profile.role == Profile.Role.ADMIN

    @property
    def role(self) -> str:
        return self.profile.role


def actor_for_user(user) -> ActorContext:
    """
    Build an ActorContext from a user.

    The profile is loaded FRESH from the database so that role changes
    take effect on the next request.

    Raises:
        NotAuthenticated: If user is not authenticated
        PermissionDenied: If user has no profile/organization
    """
    if not user or not user.is_authenticated:
        raise NotAuthenticated("Authentication required.")

    try:
        profile = Profile.objects.select_related("organization").get(user=user)
    except Profile.DoesNotExist:
        raise PermissionDenied("Your account is not linked to an organization.")

    return ActorContext(
        user=user,
        organization=profile.organization,
        profile=profile,
    )


def resolve_actor(request) -> ActorContext:
    """
    Extract ActorContext from the current request.

    This is called at the start of every view that needs authorization.
    The organization always comes from the user's profile, never from
    request data.
    """
    return actor_for_user(getattr(request, "user", None))


def require_admin(actor: ActorContext) -> None:
    """
    Require that the actor holds the admin role.

    Raises:
        PermissionDenied: If the actor is not an admin
    """
    if not actor.is_admin:
        raise PermissionDenied("Permission denied: admin role required.")


def resolve_actor_optional(request):
    """
    Try to resolve ActorContext, return None if not possible.

    Useful for views that work with or without authentication.
    """
    try:
        return resolve_actor(request)
    except (NotAuthenticated, PermissionDenied):
        return None
