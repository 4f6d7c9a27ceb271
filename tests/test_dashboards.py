from datetime import timedelta

from fittrack.crud import attendanceCrud, bookingsCrud
from fittrack.crud.dashboardCrud import today_bounds
from fittrack.core.conversions import utcnow

MEMBER_QUERY = """
{
  memberDashboard {
    coursesUsed
    courseLimit
    totalAttendance
    subscription { planName status }
    upcomingBookings { status class { id name } }
  }
}
"""

TRAINER_QUERY = """
{
  trainerDashboard {
    totalMembers
    todaysCheckIns
    upcomingClasses { booked waitlisted class { id availableSpots } }
  }
}
"""

ADMIN_QUERY = "{ adminDashboard { totalMembers totalTrainers activeSubscriptions todaysCheckIns totalRevenue } }"


async def _graphql(client, query, headers=None):
    response = await client.post("/graphql", json={"query": query}, headers=headers or {})
    assert response.status_code == 200
    return response.json()


async def test_member_dashboard(client, db, make_user, make_class, make_plan, subscribe, headers):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member, plan=await make_plan(classes_per_month=4, name="Four"))
    spin = await make_class(trainer)
    await bookingsCrud.book_class(db, member=member, class_id=spin.id)

    body = await _graphql(client, MEMBER_QUERY, headers(member))

    dashboard = body["data"]["memberDashboard"]
    assert dashboard["coursesUsed"] == 1
    assert dashboard["courseLimit"] == 4
    assert dashboard["totalAttendance"] == 0
    assert dashboard["subscription"] == {"planName": "Four", "status": "active"}
    assert dashboard["upcomingBookings"] == [{"status": "booked", "class": {"id": spin.id, "name": "Spin"}}]


async def test_trainer_dashboard(client, db, make_user, make_class, subscribe, headers):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, starts_in=timedelta(minutes=-5), capacity=1)
    first, second = await make_user(), await make_user()
    for m in (first, second):
        await subscribe(m)
        await bookingsCrud.book_class(db, member=m, class_id=spin.id)
    await attendanceCrud.manual_check_in(db, caller=trainer, class_id=spin.id, member_id=first.id)

    body = await _graphql(client, TRAINER_QUERY, headers(trainer))

    dashboard = body["data"]["trainerDashboard"]
    assert dashboard["totalMembers"] == 2
    assert dashboard["todaysCheckIns"] == 1
    assert dashboard["upcomingClasses"] == [{"booked": 1, "waitlisted": 1, "class": {"id": spin.id, "availableSpots": 0}}]


async def test_admin_dashboard(client, make_user, subscribe, headers):
    admin = await make_user("admin")
    await make_user("trainer")
    member = await make_user()
    await subscribe(member)

    body = await _graphql(client, ADMIN_QUERY, headers(admin))

    dashboard = body["data"]["adminDashboard"]
    assert dashboard["totalMembers"] == 1
    assert dashboard["totalTrainers"] == 1
    assert dashboard["activeSubscriptions"] == 1
    assert dashboard["todaysCheckIns"] == 0


async def test_dashboards_are_role_scoped(client, make_user, headers):
    member = await make_user()

    body = await _graphql(client, ADMIN_QUERY, headers(member))
    assert body["data"] is None
    assert body["errors"][0]["message"] == "You do not have permission to view this dashboard."

    anonymous = await _graphql(client, MEMBER_QUERY)
    assert anonymous["errors"]


def test_today_bounds_cover_one_day():
    start, end = today_bounds()
    assert end - start == timedelta(days=1)
    assert start <= utcnow() < end


async def test_graphiql_served_outside_production(client):
    response = await client.get("/graphql", headers={"Accept": "text/html"})
    assert response.status_code == 200
    assert "graphiql" in response.text.lower()
