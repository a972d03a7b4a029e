from rest_framework.permissions import BasePermission


class RolePermission(BasePermission):
    """
    Base permission class for role-based access control.
    Ensures user is authenticated and active.
    """
    allowed_roles = set()

    def has_permission(self, request, view):
        user = request.user

        if not user or not user.is_authenticated:
            return False

        if not user.is_active:
            return False

        # Superusers always bypass role checks
        if user.is_superuser:
            return True

        return getattr(user, "role", None) in self.allowed_roles


class IsAdminOnly(RolePermission):
    message = "Only property admins can perform this action."
    allowed_roles = {"ADMIN"}
