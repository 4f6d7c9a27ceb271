import strawberry

from fittrack.graphql.dashboard.queries import DashboardQueries


@strawberry.type
class Query(DashboardQueries):
    @strawberry.field
    def hello(self) -> str:
        return "Hello from GraphQL!"


schema = strawberry.Schema(query=Query)
