"""
test_directory.py — Tests for the in-memory and SQL user directories.

The SQL directory runs against in-memory SQLite (aiosqlite); StaticPool
keeps the single connection alive across sessions.

Run with:
    pytest tests/test_directory.py -v
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crowdalert.alerts.directory import InMemoryUserDirectory, SqlUserDirectory, UserRow
from crowdalert.alerts.models import UserRecord
from crowdalert.core.database import init_db
from crowdalert.core.errors import UpstreamUnavailableError


async def _collect(directory):
    return [user async for user in directory.iter_users()]


class TestInMemoryUserDirectory:

    @pytest.mark.asyncio
    async def test_iterates_all_users(self):
        users = [UserRecord("u1", "+911", "400001"), UserRecord("u2", "+912")]
        directory = InMemoryUserDirectory(users)
        directory.add(UserRecord("u3", "+913", "400050"))

        assert len(directory) == 3
        assert [u.id for u in await _collect(directory)] == ["u1", "u2", "u3"]

    def test_has_pincode(self):
        assert UserRecord("u1", "+911", "400001").has_pincode
        assert not UserRecord("u2", "+912", None).has_pincode
        assert not UserRecord("u3", "+913", "  ").has_pincode


class TestSqlUserDirectory:

    @pytest_asyncio.fixture
    async def session_factory(self):
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        await init_db(engine)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            session.add_all([
                UserRow(id=f"u{i}", contact=f"+9198000000{i:02d}", pincode="400001")
                for i in range(7)
            ])
            session.add(UserRow(id="nopin", contact="+919811111111", pincode=None))
            await session.commit()
        yield factory
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_streams_every_row_in_batches(self, session_factory):
        directory = SqlUserDirectory(session_factory, batch_size=3)
        users = await _collect(directory)

        assert len(users) == 8
        assert {u.id for u in users} == {f"u{i}" for i in range(7)} | {"nopin"}
        assert all(isinstance(u, UserRecord) for u in users)

    @pytest.mark.asyncio
    async def test_database_error_is_upstream(self):
        # No tables created: the SELECT fails inside the driver
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            with pytest.raises(UpstreamUnavailableError) as exc:
                await _collect(SqlUserDirectory(factory))
            assert exc.value.service == "user_directory"
            assert exc.value.message.endswith("OperationalError")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_missing_pincode_preserved(self, session_factory):
        users = {u.id: u for u in await _collect(SqlUserDirectory(session_factory, batch_size=3))}
        assert users["nopin"].pincode is None
        assert users["u0"].contact_channel == "+91980000000000"
