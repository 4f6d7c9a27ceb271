"""
GraphQL queries for the role dashboards
"""
import strawberry
from strawberry.types import Info

from fittrack.crud import dashboardCrud
from fittrack.graphql.auth.permissions import IsAdmin, IsMember, IsTrainer
from .types import AdminDashboard, MemberDashboard, TrainerDashboard


@strawberry.type
class DashboardQueries:
    """Dashboard queries, one per role"""

    @strawberry.field(permission_classes=[IsAdmin])
    async def admin_dashboard(self, info: Info) -> AdminDashboard:
        stats = await dashboardCrud.admin_stats(info.context.db)
        return AdminDashboard.from_stats(stats)

    @strawberry.field(permission_classes=[IsTrainer])
    async def trainer_dashboard(self, info: Info) -> TrainerDashboard:
        """Upcoming classes with seat and waitlist counts"""
        stats = await dashboardCrud.trainer_stats(info.context.db, info.context.user.id)
        return TrainerDashboard.from_stats(stats)

    @strawberry.field(permission_classes=[IsMember])
    async def member_dashboard(self, info: Info) -> MemberDashboard:
        stats = await dashboardCrud.member_stats(info.context.db, info.context.user.id)
        return MemberDashboard.from_stats(stats)
