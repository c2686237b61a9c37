from rest_framework import serializers

from .models import User


class UserBasicSerializer(serializers.ModelSerializer):
    """Lite user info embedded in ride payloads."""
    name = serializers.CharField(source="display_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "username", "name", "phone_number"]
