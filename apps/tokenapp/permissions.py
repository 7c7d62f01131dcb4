"""
Permission classes for token operations.

Officials act only on the queue keys of the office and department recorded
in their ``OfficialAssignment``.
"""

from rest_framework import permissions

from .exceptions import PermissionScope
from .models import OfficialAssignment
from .services.queue_key import OfficialScope


def get_official_scope(user):
    """
    Return the ``OfficialScope`` of an authenticated official.

    Raises:
        PermissionScope: If the user has no active assignment.
    """
    try:
        assignment = user.official_assignment
    except (AttributeError, OfficialAssignment.DoesNotExist):
        raise PermissionScope("User is not assigned to any office department")

    if not assignment.is_active:
        raise PermissionScope("Official assignment is inactive")

    return OfficialScope(assignment.office_id, assignment.department_id)


class IsOfficial(permissions.BasePermission):
    """Allows access only to users with an active office assignment"""

    message = "Only office officials can perform this action."

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return OfficialAssignment.objects.filter(user=user, is_active=True).exists()


class IsTokenOwnerOrScopedOfficial(permissions.BasePermission):
    """Object permission for reading a token"""

    def has_object_permission(self, request, view, obj):
        if str(request.user.pk) == obj.citizen_id:
            return True

        assignment = OfficialAssignment.objects.filter(user=request.user, is_active=True).first()
        if assignment is None:
            return False
        return (
            assignment.office_id == obj.office_id
            and assignment.department_id == obj.department_id
        )
