from rest_framework import serializers

from .models import Organization, Profile, User


class OrganizationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Organization
        fields = ("id", "public_id", "name", "created_at", "updated_at")
        read_only_fields = ("id", "public_id", "created_at", "updated_at")


class OrganizationUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)


class ProfileSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(source="user.id", read_only=True)
    org_id = serializers.IntegerField(source="organization_id", read_only=True)

    class Meta:
        model = Profile
        fields = ("id", "user_id", "email", "full_name", "role", "org_id", "created_at", "updated_at")
        read_only_fields = fields


class ProfileUpdateSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    role = serializers.ChoiceField(choices=Profile.Role.choices, required=False)


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "public_id", "email")


class RegistrationSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(min_length=8, write_only=True)
    full_name = serializers.CharField(max_length=150, required=False, allow_blank=True, default="")
    org_name = serializers.CharField(max_length=255)

    def validate_email(self, value: str):
        return value.lower().strip()

    def validate_org_name(self, value: str):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Organization name is required.")
        return value


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField()


class SessionSerializer(serializers.Serializer):
    """Output shape of the current session: {user_id, email, profile}."""

    user_id = serializers.IntegerField()
    email = serializers.EmailField()
    profile = ProfileSerializer(allow_null=True)
