# accounts/views.py
"""
Thin views for identity and organization endpoints.

Views handle: HTTP parsing, authentication, response formatting.
Commands handle: business logic, validation, logging.
"""

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenRefreshView

from ops.operations import execute_command

from .authz import resolve_actor
from .commands import (
    get_current_session,
    sign_in,
    sign_out,
    sign_up,
    update_organization,
    update_profile,
)
from .models import Profile
from .serializers import (
    LoginSerializer,
    LogoutSerializer,
    OrganizationSerializer,
    OrganizationUpdateSerializer,
    ProfileSerializer,
    ProfileUpdateSerializer,
    RegistrationSerializer,
    SessionSerializer,
    UserSerializer,
)
from .throttles import LoginThrottle, RegistrationThrottle


class RegisterView(APIView):
    """POST /api/auth/register/ -> create user + organization + admin profile."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [RegistrationThrottle]

    def post(self, request):
        serializer = RegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            sign_up,
            success_message="Account created successfully",
            failure_message="Failed to create account",
            **serializer.validated_data,
        )
        if not result.success:
            return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {
                **result.data["tokens"],
                "user": UserSerializer(result.data["user"]).data,
                "organization": OrganizationSerializer(result.data["organization"]).data,
                "profile": ProfileSerializer(result.data["profile"]).data,
            },
            status=status.HTTP_201_CREATED,
        )


class LoginView(APIView):
    """POST /api/auth/login/ -> JWT pair bound to the user's organization."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [LoginThrottle]

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            sign_in,
            success_message="Signed in successfully",
            failure_message="Failed to sign in",
            **serializer.validated_data,
        )
        if not result.success:
            return Response({"detail": result.error}, status=status.HTTP_401_UNAUTHORIZED)

        return Response({
            **result.data["tokens"],
            "user": UserSerializer(result.data["user"]).data,
            "profile": ProfileSerializer(result.data["profile"]).data,
        })


class LogoutView(APIView):
    """POST /api/auth/logout/ -> blacklist the refresh token."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = LogoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            sign_out,
            serializer.validated_data["refresh"],
            success_message="Signed out successfully",
            failure_message="Failed to sign out",
        )
        if not result.success:
            return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ClientLedgerTokenRefreshView(TokenRefreshView):
    """POST /api/auth/refresh/ -> rotate the JWT pair (claims are preserved)."""


class MeView(APIView):
    """GET /api/auth/me/ -> current session {user_id, email, profile}."""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        session = get_current_session(request.user)
        return Response(SessionSerializer(session).data)


class OrganizationView(APIView):
    """
    GET /api/organization/ -> the actor's organization
    PATCH /api/organization/ -> rename (admin)
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        return Response(OrganizationSerializer(actor.organization).data)

    def patch(self, request):
        actor = resolve_actor(request)
        serializer = OrganizationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_organization,
            actor,
            success_message="Organization updated successfully",
            failure_message="Failed to update organization",
            **serializer.validated_data,
        )
        if not result.success:
            return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)
        return Response(OrganizationSerializer(result.data).data)


class ProfileListView(APIView):
    """GET /api/profiles/ -> members of the actor's organization."""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        profiles = Profile.objects.filter(
            organization=actor.organization,
        ).select_related("user").order_by("created_at")
        return Response(ProfileSerializer(profiles, many=True).data)


class ProfileDetailView(APIView):
    """PATCH /api/profiles/<id>/ -> change full_name (self) or role (admin)."""
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, pk):
        actor = resolve_actor(request)
        serializer = ProfileUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_profile,
            actor,
            pk,
            success_message="Profile updated successfully",
            failure_message="Failed to update profile",
            **serializer.validated_data,
        )
        if not result.success:
            return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)
        return Response(ProfileSerializer(result.data).data)
