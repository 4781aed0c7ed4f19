import itertools
import logging
import secrets
import time
from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns the engine and session factory for one running application.

    Created unopened; ``connect`` builds the engine and creates the tables,
    ``dispose`` closes every pooled connection.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine = None
        self.AsyncSessionLocal = None

    async def connect(self):
        self.engine = create_async_engine(self.url, echo=self.echo)
        self.AsyncSessionLocal = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        # model modules register their tables on Base when imported
        from taskhub.models import task, user  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database ready url=%s", self.engine.url.render_as_string(hide_password=True))

    async def dispose(self):
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database disposed")
        self.engine = None
        self.AsyncSessionLocal = None

    def session(self) -> AsyncSession:
        if self.AsyncSessionLocal is None:
            raise RuntimeError("Database is not connected")
        return self.AsyncSessionLocal()


async def get_db(request: Request):
    async with request.app.state.db.session() as session:
        yield session


_id_counter = itertools.count(secrets.randbelow(0xFFFFFF))
_process_random = secrets.token_hex(5)


def new_object_id() -> str:
    """24 hex chars: 4-byte seconds timestamp, 5 per-process random bytes, 3-byte counter."""
    return "%08x%s%06x" % (int(time.time()), _process_random, next(_id_counter) & 0xFFFFFF)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: datetime) -> datetime:
    """Datetimes are stored as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc_naive(value).isoformat(timespec="milliseconds") + "Z"
