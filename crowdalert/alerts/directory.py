"""
directory.py — Read-only access to the registered user base.

The audience selector only needs to enumerate users; it never writes.

    UserDirectory (protocol)
        ├── InMemoryUserDirectory — fixtures, tests, small deployments
        └── SqlUserDirectory      — `users` table, streamed in batches

Enumeration order is not guaranteed by either implementation.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Iterable, List, Optional, Protocol

from sqlalchemy import String, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from crowdalert.alerts.models import UserRecord
from crowdalert.core.config import settings
from crowdalert.core.database import Base
from crowdalert.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

SERVICE_NAME = "user_directory"


class UserDirectory(Protocol):
    """Enumerable source of UserRecords."""

    def iter_users(self) -> AsyncIterator[UserRecord]:
        ...


class InMemoryUserDirectory:
    """Directory backed by a list."""

    def __init__(self, users: Iterable[UserRecord] = ()):
        self._users: List[UserRecord] = list(users)

    def add(self, user: UserRecord) -> None:
        self._users.append(user)

    def __len__(self) -> int:
        return len(self._users)

    async def iter_users(self) -> AsyncIterator[UserRecord]:
        for user in list(self._users):
            yield user


# ═══════════════════════════════════════════════════════════════════════════
# SQL-backed directory
# ═══════════════════════════════════════════════════════════════════════════

class UserRow(Base):
    """Subset of the users table the pipeline reads."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contact: Mapped[str] = mapped_column(String(32), default="")
    pincode: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    def to_record(self) -> UserRecord:
        return UserRecord(id=self.id, contact_channel=self.contact or "", pincode=self.pincode)


class SqlUserDirectory:
    """
    Streams users from the database without loading the table at once.

    Usage:
        directory = SqlUserDirectory(get_session_factory())
        async for user in directory.iter_users():
            ...
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_size: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.batch_size = batch_size or settings.DIRECTORY_BATCH_SIZE

    async def iter_users(self) -> AsyncIterator[UserRecord]:
        stmt = select(UserRow).execution_options(yield_per=self.batch_size)
        try:
            async with self._session_factory() as session:
                result = await session.stream_scalars(stmt)
                async for row in result:
                    yield row.to_record()
        except (SQLAlchemyError, OSError) as e:
            logger.error("User directory read failed: %s", e)
            raise UpstreamUnavailableError(SERVICE_NAME, type(e).__name__) from e
