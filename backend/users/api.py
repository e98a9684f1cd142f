from __future__ import annotations

from rest_framework import generics, permissions

from .serializers import ProfileSerializer


class MeView(generics.RetrieveUpdateAPIView):
    """Authenticated profile view for the current user."""

    serializer_class = ProfileSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ["get", "patch", "head", "options"]

    def get_object(self):
        user = self.request.user
        self.check_object_permissions(self.request, user)
        return user
