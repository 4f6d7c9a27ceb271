import os
import tempfile
from datetime import timedelta

_TMP = tempfile.mkdtemp(prefix="fittrack-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/unused.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["LOG_FILE_PATH"] = os.path.join(_TMP, "logs", "app.log")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["BOOKING_CANCELLATION_HOURS"] = "2"
os.environ["QR_TOKEN_TTL_MINUTES"] = "15"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_fittrack"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_fittrack"
os.environ["SECRET_KEY_ACCESS_TOKEN"] = "test-access-secret"
os.environ["SECRET_KEY_REFRESH_TOKEN"] = "test-refresh-secret"

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from fittrack.auth.jwt import create_access_token  # noqa: E402
from fittrack.core.conversions import utcnow  # noqa: E402
from fittrack.crud import usersCrud  # noqa: E402
from fittrack.db.postgresql import Base, get_db  # noqa: E402
from fittrack.main import app  # noqa: E402
from fittrack.models import ClassSession, Plan, Subscription  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fittrack.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(role="member", name=None, email=None, password="secret123"):
        counter["n"] += 1
        n = counter["n"]
        return await usersCrud.create_user(
            db,
            name=name or f"{role.title()} {n}",
            email=email or f"{role}{n}@example.com",
            password=password,
            role=role,
        )

    return _make


@pytest.fixture
def make_plan(db):
    async def _make(classes_per_month=0, price=500000, name="Monthly", interval="month"):
        plan = Plan(name=name, price=price, interval=interval, classes_per_month=classes_per_month, features=[])
        db.add(plan)
        await db.commit()
        return plan

    return _make


@pytest.fixture
def subscribe(db, make_plan):
    async def _subscribe(user, plan=None, status="active", days_left=20):
        plan = plan or await make_plan()
        now = utcnow()
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            stripe_customer_id=f"cus_{user.id}",
            stripe_subscription_id=f"sub_{user.id}_{plan.id}_{status}",
            status=status,
            current_period_start=now - timedelta(days=10),
            current_period_end=now + timedelta(days=days_left),
        )
        db.add(subscription)
        await db.commit()
        return subscription

    return _subscribe


@pytest.fixture
def make_class(db):
    async def _make(
        trainer,
        starts_in=timedelta(days=1),
        minutes=60,
        capacity=10,
        name="Spin",
        recurrence_group_id=None,
        status="scheduled",
    ):
        start = utcnow() + starts_in
        class_session = ClassSession(
            name=name,
            description=f"{name} class",
            location="Studio A",
            trainer_id=trainer.id,
            start_at=start,
            end_at=start + timedelta(minutes=minutes),
            duration_min=minutes,
            capacity=capacity,
            attendee_count=0,
            waitlist_seq=0,
            status=status,
            recurrence_group_id=recurrence_group_id,
        )
        db.add(class_session)
        await db.commit()
        return class_session

    return _make


def auth_headers(user):
    token = create_access_token({"user_id": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers
