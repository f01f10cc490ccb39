"""Shared fixtures: an in-memory SQLite database per test and a small catalog."""
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import coliving.models  # noqa: F401
from coliving.core.database import Base
from coliving.models.apartment import Apartment
from coliving.schemas.booking import BookingCreate


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def apartments(db):
    """Three apartments: X at 900/month, Y at 600/month, Z at 1200/month."""
    catalog = [
        Apartment(title="Apartment X", price=Decimal("900.00")),
        Apartment(title="Apartment Y", price=Decimal("600.00")),
        Apartment(title="Apartment Z", price=Decimal("1200.00")),
    ]
    db.add_all(catalog)
    await db.commit()
    return catalog


@pytest.fixture
def booking_data():
    """Factory for BookingCreate payloads with a default guest."""

    def build(apartment_id, check_in, check_out, **overrides):
        data = {
            "apartment_id": apartment_id,
            "guest_name": "Ana Sousa",
            "guest_email": "ana@example.com",
            "check_in_date": check_in,
            "check_out_date": check_out,
        }
        data.update(overrides)
        return BookingCreate(**data)

    return build
