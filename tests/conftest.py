"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are created as-is;
``SELECT ... FOR UPDATE`` renders as a plain SELECT on SQLite and the
partial unique indexes are supported natively.

pysqlite's own transaction handling breaks SAVEPOINT, so the engine
takes over BEGIN itself (the documented SQLAlchemy recipe).
"""

from datetime import date, timedelta
from itertools import count
from typing import AsyncGenerator, Optional

import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.api.middleware import limiter
from src.config import settings
from src.domain.booking import today_local
from src.domain.entities import Actor, Location
from src.domain.enums import RideType, UserRole, VehicleType
from src.infrastructure.database import Base
from src.infrastructure.models import UserModel, VehicleModel
from src.services.rides import Place, RideService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

limiter.enabled = False

_seq = count(1)

# Colombo Fort -> Bandaranaike airport is ~28 km; Fort -> Galle Face ~1 km
FORT = Place("Colombo Fort", Location(6.9344, 79.8428))
GALLE_FACE = Place("Galle Face Green", Location(6.9271, 79.8450))
AIRPORT = Place("Bandaranaike International Airport", Location(7.1808, 79.8841))


# ── Engine / session ──────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _no_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Factories ─────────────────────────────────────────────────────────


async def make_user(
    session: AsyncSession, role: UserRole = UserRole.USER, name: Optional[str] = None
) -> UserModel:
    n = next(_seq)
    user = UserModel(
        name=name or f"{role.value.title()} {n}",
        email=f"{role.value}{n}@fleet.test",
        phone=f"07{n:08d}",
        password_hash="not-a-real-hash",
        role=role,
    )
    session.add(user)
    await session.flush()
    await session.refresh(user)
    return user


async def make_vehicle(
    session: AsyncSession, number: Optional[str] = None
) -> VehicleModel:
    vehicle = VehicleModel(
        vehicle_number=number or f"TV-{next(_seq):04d}", type=VehicleType.CAR
    )
    session.add(vehicle)
    await session.flush()
    await session.refresh(vehicle)
    return vehicle


def actor_of(user: UserModel) -> Actor:
    return Actor(user_id=user.id, role=UserRole(user.role))


def headers_for(user: UserModel) -> dict[str, str]:
    return {"X-User-Id": str(user.id), "X-User-Role": UserRole(user.role).value}


def booking_day(days_ahead: int = 1) -> date:
    return today_local(settings.booking_timezone) + timedelta(days=days_ahead)


async def book(
    service: RideService,
    requester: UserModel,
    *,
    destination: Place = GALLE_FACE,
    ride_type: RideType = RideType.ONE_WAY,
    distance: Optional[float] = None,
    on: Optional[date] = None,
    at: str = "09:00",
):
    return await service.create_ride(
        actor_of(requester),
        ride_type=ride_type,
        pickup=FORT,
        destination=destination,
        scheduled_date=on or booking_day(),
        scheduled_time=at,
        distance=distance,
    )


# ── Common cast ───────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def fleet(db_session):
    """One of each role plus two drivers and two vehicles."""
    cast = {
        "admin": await make_user(db_session, UserRole.ADMIN, "Fleet Admin"),
        "pm": await make_user(db_session, UserRole.PROJECT_MANAGER, "Project Manager"),
        "user": await make_user(db_session, UserRole.USER, "Nimal"),
        "other_user": await make_user(db_session, UserRole.USER, "Ayesha"),
        "driver": await make_user(db_session, UserRole.DRIVER, "Driver 1"),
        "driver2": await make_user(db_session, UserRole.DRIVER, "Driver 2"),
        "vehicle": await make_vehicle(db_session, "NB-1985"),
        "vehicle2": await make_vehicle(db_session, "PA-4473"),
    }
    await db_session.commit()
    return cast
