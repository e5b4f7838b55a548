# users/permissions.py

from rest_framework.permissions import BasePermission


# ---------------- BASE ROLE PERMISSION ----------------
class HasRole(BasePermission):
    """
    Base permission to check user role safely.
    """

    allowed_roles = set()

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        if getattr(user, "is_superuser", False):
            return True
        return getattr(user, "role", None) in self.allowed_roles


# ---------------- ROLE PERMISSIONS ----------------
class IsOrderStaff(HasRole):
    """
    Staff allowed to move orders through fulfilment:
    - admin
    - manager
    - support
    """

    allowed_roles = {"admin", "manager", "support"}
