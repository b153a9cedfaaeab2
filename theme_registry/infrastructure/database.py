import json
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from theme_registry.domain.exceptions import CacheError, CacheOpenError
from theme_registry.domain.models import CacheRecord, ThemeEntry

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400
# Seconds sqlite waits on a locked database before failing a write.
SQLITE_BUSY_TIMEOUT = 30

# SQLAlchemy core Table definition
metadata = MetaData()
repo_cache_table = Table(
    'repo_cache', metadata,
    Column('repo', String, primary_key=True),
    Column('updated_at', String, nullable=False),
    Column('scanned_at', Integer, nullable=False),
    Column('payload_json', Text, nullable=False),
    Column('parse_error', Text, nullable=True),
)


def serialize_payload(payload: Optional[ThemeEntry]) -> str:
    if payload is None:
        return "{}"
    return json.dumps(payload.to_json_dict(), ensure_ascii=False, separators=(',', ':'))


def parse_payload(payload_json: Optional[str]) -> Optional[ThemeEntry]:
    if not payload_json:
        return None
    try:
        return ThemeEntry.model_validate_json(payload_json)
    except ValidationError:
        return None


class RepoCache:
    """
    Durable cache of one record per repository identity, backed by SQLite.
    Safe for concurrent use: uniqueness is enforced by upsert, not by locking.
    """

    def __init__(self, engine: AsyncEngine, clock: Callable[[], float] = time.time):
        self.engine = engine
        self._clock = clock

    @classmethod
    async def open(
        cls, db_path: Union[str, Path], clock: Callable[[], float] = time.time
    ) -> "RepoCache":
        """
        Opens (creating if needed) the cache database at `db_path`.

        Raises:
            CacheOpenError: If the directory, file or schema cannot be created.
        """
        path = Path(db_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_async_engine(
                f"sqlite+aiosqlite:///{path}",
                echo=False,
                connect_args={"timeout": SQLITE_BUSY_TIMEOUT},
            )
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except (OSError, SQLAlchemyError) as e:
            raise CacheOpenError(f"Failed to open cache at {path}: {e}") from e
        return cls(engine, clock=clock)

    async def close(self) -> None:
        await self.engine.dispose()

    def _now(self) -> int:
        return int(self._clock())

    def _to_record(self, row) -> CacheRecord:
        return CacheRecord(
            repo=row.repo,
            updated_at=row.updated_at,
            scanned_at=row.scanned_at,
            payload=parse_payload(row.payload_json),
            parse_error=row.parse_error,
        )

    async def read_record(self, repo: str) -> Optional[CacheRecord]:
        stmt = select(repo_cache_table).where(repo_cache_table.c.repo == repo)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                row = result.first()
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to read cache record for {repo}: {e}") from e
        return self._to_record(row) if row is not None else None

    async def upsert_record(
        self,
        repo: str,
        updated_at: str,
        payload: Optional[ThemeEntry],
        parse_error: Optional[str] = None,
    ) -> None:
        """
        Inserts or replaces the record for `repo`, stamping scanned_at with the current time.

        Args:
            repo (str): Repository identity (primary key).
            updated_at (str): Last known remote update timestamp.
            payload (Optional[ThemeEntry]): Parsed entity, or None for failed attempts.
            parse_error (Optional[str]): Error message when the attempt failed.
        """
        stmt = insert(repo_cache_table).values(
            repo=repo,
            updated_at=updated_at,
            scanned_at=self._now(),
            payload_json=serialize_payload(payload),
            parse_error=parse_error,
        )
        upsert_stmt = stmt.on_conflict_do_update(
            index_elements=['repo'],
            set_={
                'updated_at': stmt.excluded.updated_at,
                'scanned_at': stmt.excluded.scanned_at,
                'payload_json': stmt.excluded.payload_json,
                'parse_error': stmt.excluded.parse_error,
            },
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(upsert_stmt)
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to write cache record for {repo}: {e}") from e

    async def should_refresh(self, repo: str, discovered_updated_at: str, stale_after_days: int) -> bool:
        """
        Decides whether `repo` has to be fetched again.

        A missing record or a recorded failure always forces a refresh. A known
        remote timestamp that differs from the stored one forces a refresh.
        Otherwise the record is refreshed once it is older than the staleness window.
        """
        record = await self.read_record(repo)
        if record is None:
            return True
        if record.parse_error is not None:
            return True
        if discovered_updated_at and record.updated_at != discovered_updated_at:
            return True
        return self._now() - record.scanned_at >= stale_after_days * SECONDS_PER_DAY

    async def list_valid_payloads(self) -> List[ThemeEntry]:
        stmt = select(repo_cache_table.c.payload_json).where(repo_cache_table.c.parse_error.is_(None))
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to list cached payloads: {e}") from e

        payloads = []
        for row in rows:
            entry = parse_payload(row.payload_json)
            if entry is not None and entry.repo and entry.is_publishable():
                payloads.append(entry)
        return payloads

    async def list_all(self) -> List[CacheRecord]:
        stmt = select(repo_cache_table).order_by(repo_cache_table.c.repo)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to list cache records: {e}") from e
        return [self._to_record(row) for row in rows]
