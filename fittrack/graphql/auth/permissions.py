from strawberry.permission import BasePermission
from strawberry.types import Info


class IsAuthenticated(BasePermission):
    message = "Authentication required."

    def has_permission(self, source, info: Info, **kwargs):
        return bool(info.context.user)


class _HasRole(BasePermission):
    roles: tuple = ()
    message = "You do not have permission to view this dashboard."

    def has_permission(self, source, info: Info, **kwargs):
        user = info.context.user
        return bool(user) and user.role in self.roles


class IsAdmin(_HasRole):
    roles = ("admin",)


class IsTrainer(_HasRole):
    roles = ("trainer",)


class IsMember(_HasRole):
    roles = ("member",)
