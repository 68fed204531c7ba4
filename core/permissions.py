# core/permissions.py

from rest_framework import permissions


def is_platform_admin(user) -> bool:
    return bool(user and user.is_authenticated and (user.is_staff or getattr(user, 'role', '') == 'admin'))


class IsAuthenticatedAndAdmin(permissions.BasePermission):
    """Allow access only to authenticated users with the role 'admin' (or staff)."""
    def has_permission(self, request, view):
        return is_platform_admin(request.user)


class IsBookingParticipant(permissions.BasePermission):
    """
    Object-level permission: the booking's customer, its assigned detailer,
    or an admin.
    """
    def has_object_permission(self, request, view, obj):
        user = request.user
        if is_platform_admin(user):
            return True
        if obj.user_id == user.id:
            return True
        return bool(obj.detailer_id and obj.detailer.user_id == user.id)
