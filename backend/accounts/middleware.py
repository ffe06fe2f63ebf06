"""
Tenant isolation middleware with RLS.

This middleware reads the organization claim of the JWT and sets the
PostgreSQL RLS parameters for the duration of the request.

STRICT ALLOWLIST PATTERN:
- If token has org_id -> set RLS context -> proceed
- If token has NO org_id -> allow ONLY NO_TENANT_ALLOWLIST -> deny else
- Public paths run with bypass (they never read tenant rows by id)
"""
import logging

from django.conf import settings
from django.http import JsonResponse
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework.exceptions import AuthenticationFailed

from accounts import rls

logger = logging.getLogger(__name__)


class OrganizationRlsMiddleware:
    """
    Enforce organization-bound JWT tokens for all tenant data access.

    Flow:
    1. Check if public path (no auth needed)
    2. Authenticate JWT and extract org_id from token
    3. Set RLS context
    4. Process request
    5. Clear RLS context in finally block
    """

    PUBLIC_PATHS = (
        "/api/auth/register/",
        "/api/auth/login/",
        "/api/auth/refresh/",
        "/api/auth/logout/",
        "/admin/",  # Django admin (has its own auth)
        "/static/",
        "/_health/",  # Health checks (Kubernetes probes)
        "/_metrics/",  # Prometheus metrics
    )

    # Authenticated but no org_id required. These endpoints only touch
    # the user's own row and profile.
    NO_TENANT_ALLOWLIST = (
        ("GET", "/api/auth/me/"),
    )

    def __init__(self, get_response):
        self.get_response = get_response
        self.jwt_auth = JWTAuthentication()

    def __call__(self, request):
        if self._is_public_path(request.path):
            rls.set_rls_bypass(True)
            try:
                return self.get_response(request)
            finally:
                rls.clear_rls_context()

        jwt_user = None
        org_id = None

        try:
            result = self.jwt_auth.authenticate(request)
            if result:
                jwt_user, token = result
                # Extract org_id from token claim (NOT from request data)
                raw_org_id = token.get("org_id")
                if raw_org_id not in (None, "", "None"):
                    org_id = int(raw_org_id)
        except (InvalidToken, TokenError, AuthenticationFailed, ValueError):
            # Auth failed - let DRF authentication/permission classes answer 401
            logger.debug("JWT authentication failed in RLS middleware", extra={"path": request.path})

        if jwt_user is not None and org_id is not None:
            rls.set_current_org_id(org_id)
            rls.set_rls_bypass(settings.RLS_BYPASS)
            try:
                return self.get_response(request)
            finally:
                rls.clear_rls_context()

        if jwt_user is not None and org_id is None:
            if self._is_no_tenant_allowed(request.method, request.path):
                rls.set_rls_bypass(True)
                try:
                    return self.get_response(request)
                finally:
                    rls.clear_rls_context()
            return JsonResponse(
                {
                    "detail": "no_tenant_context",
                    "message": "Your token has no organization context. Please sign in again.",
                },
                status=403,
            )

        # Not authenticated via JWT (DRF answers 401, or a test client
        # authenticated the user directly).
        rls.set_rls_bypass(settings.RLS_BYPASS)
        try:
            return self.get_response(request)
        finally:
            rls.clear_rls_context()

    def _is_public_path(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.PUBLIC_PATHS)

    def _is_no_tenant_allowed(self, method: str, path: str) -> bool:
        return any(
            method == m and path.startswith(p) for m, p in self.NO_TENANT_ALLOWLIST
        )
