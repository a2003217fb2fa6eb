from rest_framework import permissions


class IsInstructorOrAdmin(permissions.BasePermission):
    message = "Only instructors and admins can perform this action."

    def has_permission(self, request, view):
        return is_privileged(request.user)


class IsInstructorOrReadOnly(permissions.BasePermission):
    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return True
        return is_privileged(request.user)


class IsOwnerOrInstructor(permissions.BasePermission):
    """Students see their own attempts; instructors see attempts at their exams."""

    def has_object_permission(self, request, view, obj):
        user = request.user
        if user.is_staff or _is_admin(user):
            return True
        if _is_instructor(user):
            return obj.exam.instructor_id == user.pk
        return obj.student_id == user.pk


class CanWorkOnAttempt(permissions.BasePermission):
    message = "You can only work on your own attempts."

    def has_object_permission(self, request, view, obj):
        return obj.student_id == request.user.pk


class IsQuestionAuthorOrAdmin(permissions.BasePermission):
    message = "Only the question's author can change it."

    def has_object_permission(self, request, view, obj):
        if request.method in permissions.SAFE_METHODS:
            return True
        user = request.user
        return user.is_staff or _is_admin(user) or obj.instructor_id == user.pk


def is_privileged(user):
    return bool(user and user.is_authenticated and (user.is_staff or _is_instructor(user) or _is_admin(user)))


def _is_instructor(user):
    return hasattr(user, 'profile') and user.profile.role == 'instructor'


def _is_admin(user):
    return hasattr(user, 'profile') and user.profile.role == 'admin'
