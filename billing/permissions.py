from rest_framework import permissions


class BillPermission(permissions.BasePermission):
    """
    - ADMIN: full access
    - TENANT: their own bills only
    """

    message = "You do not have permission to access this bill."

    def has_object_permission(self, request, view, obj):
        user = request.user

        if not user or not user.is_authenticated:
            return False

        if user.is_superuser or getattr(user, "role", None) == "ADMIN":
            return True

        return obj.tenant_id == user.id
