# chimes/core/stores/postgres.py
from __future__ import annotations
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, NoReturn, Optional

import psycopg
from sqlalchemy import delete, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from chimes.core.errors import StoreError, StoreErrorCode, duplicate_name_error
from chimes.core.logging import get_logger
from chimes.core.models.job import ClaimRequest, ClaimResult, Job
from chimes.core.models.job_pg import Base, JobModel
from chimes.core.models.store import PostgresConfig
from chimes.core.stores.base import JobStore, validate_purge_query
from chimes.core.utils.db import is_retryable_connection_error

SCHEMA_ADVISORY_LOCK_SQL = text(
    """SELECT pg_advisory_xact_lock(CAST(:key AS BIGINT))"""
)

# Single conditional update: the marker comparison and the write happen in
# one statement, so concurrent claimers cannot both match.
CLAIM_JOB_SQL = text("""
    UPDATE chimes_jobs
    SET next_run_at = :next_run_at,
        active = :active,
        last_run_marker = :new_marker
    WHERE id = :job_id
      AND last_run_marker = :expected_marker
    RETURNING id, name, channel, active, cron_expression, next_run_at,
              last_run_marker, start_date, end_date, params
""")

DELETE_JOB_BY_NAME_SQL = text('DELETE FROM chimes_jobs WHERE name = :name')

_STORE_EXCEPTIONS = (SQLAlchemyError, psycopg.Error, OSError)


class PostgresJobStore(JobStore):
    """
    PostgreSQL-backed job store (SQLAlchemy async engine, psycopg 3 driver).

    Features:
      - Schema creation serialized across processes by an advisory lock
      - Unique job names enforced by the database, not only by the pre-check
      - Compare-and-swap claims via UPDATE ... WHERE last_run_marker = :expected
      - Operational failures surfaced as StoreError with a retryable flag
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.logger = get_logger('store.postgres')

        engine_cfg = self.config.model_dump(exclude={'database_url'}, exclude_none=True)
        self.async_engine = create_async_engine(self.config.database_url, **engine_cfg)
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._initialized = False

    @classmethod
    def from_url(cls, database_url: str, **pool_options: Any) -> PostgresJobStore:
        return cls(PostgresConfig(database_url=database_url, **pool_options))

    def _schema_advisory_key(self) -> int:
        """
        Compute a stable 64-bit advisory lock key for schema initialization.

        Uses the database URL as a basis so that different clusters do not
        contend on the same advisory lock key.
        """
        basis = self.config.database_url.encode('utf-8', errors='ignore')
        h = hashlib.sha256(b'chimes-schema:' + basis).digest()
        return int.from_bytes(h[:8], byteorder='big', signed=True)

    def _raise_store_error(
        self, code: StoreErrorCode, message: str, exc: BaseException
    ) -> NoReturn:
        retryable = is_retryable_connection_error(exc)
        self.logger.error(f'{message}: {exc}')
        raise StoreError(code, message, retryable=retryable, exception=exc) from exc

    async def initialize(self) -> None:
        """
        Ensure the jobs table and indexes exist.

        Safe to call multiple times and from multiple processes; internally
        guarded by a PostgreSQL advisory lock to avoid DDL races.
        """
        if self._initialized:
            return
        try:
            async with self.async_engine.begin() as conn:
                await conn.execute(
                    SCHEMA_ADVISORY_LOCK_SQL, {'key': self._schema_advisory_key()}
                )
                await conn.run_sync(Base.metadata.create_all)
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(
                StoreErrorCode.SCHEMA_INIT_FAILED, 'Schema initialization failed', e
            )
        self._initialized = True
        self.logger.info('Job store schema ready')

    async def close(self) -> None:
        try:
            await self.async_engine.dispose()
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(StoreErrorCode.CLOSE_FAILED, 'Engine dispose failed', e)
        self.logger.info('Job store closed')

    async def create(self, job: Job) -> Job:
        await self.initialize()

        # Fast path: reject known duplicates before writing.
        if await self.find_by_name(job.name) is not None:
            raise duplicate_name_error(job.name)

        try:
            async with self.session_factory() as session:
                row = JobModel.from_job(job)
                session.add(row)
                await session.commit()
                stored = row.to_job()
        except IntegrityError as e:
            # Lost the insert race to another process creating the same name
            raise duplicate_name_error(job.name) from e
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(
                StoreErrorCode.CREATE_FAILED, f"Failed to create job '{job.name}'", e
            )

        self.logger.info(
            f"Created job '{stored.name}' (id={stored.id}), next_run={stored.next_run_at}"
        )
        return stored

    async def load_due(
        self, horizon_seconds: int, now: Optional[datetime] = None
    ) -> list[Job]:
        await self.initialize()
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(seconds=horizon_seconds)

        stmt = (
            select(JobModel)
            .where(JobModel.active.is_(True))
            .where(JobModel.next_run_at <= horizon)
            .where(JobModel.start_date <= now)
            .where(or_(JobModel.end_date.is_(None), JobModel.end_date >= now))
            .order_by(JobModel.next_run_at.asc())
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [row.to_job() for row in result.scalars()]
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(StoreErrorCode.LOAD_FAILED, 'Failed to load due jobs', e)

    async def claim(self, request: ClaimRequest) -> ClaimResult:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    CLAIM_JOB_SQL,
                    {
                        'job_id': request.job_id,
                        'expected_marker': request.expected_marker,
                        'new_marker': request.new_marker,
                        'next_run_at': request.next_run_at,
                        'active': request.active,
                    },
                )
                row = result.mappings().first()
                await session.commit()
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(
                StoreErrorCode.CLAIM_FAILED, f'Failed to claim job id={request.job_id}', e
            )

        if row is None:
            return ClaimResult.lost()
        return ClaimResult.won(Job.model_validate(dict(row)))

    async def find_by_name(self, name: str) -> Optional[Job]:
        await self.initialize()
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(JobModel).where(JobModel.name == name)
                )
                row = result.scalar_one_or_none()
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(
                StoreErrorCode.QUERY_FAILED, f"Failed to look up job '{name}'", e
            )
        return row.to_job() if row is not None else None

    async def remove_by_name(self, name: str) -> bool:
        await self.initialize()
        try:
            async with self.session_factory() as session:
                result = await session.execute(DELETE_JOB_BY_NAME_SQL, {'name': name})
                await session.commit()
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(
                StoreErrorCode.DELETE_FAILED, f"Failed to remove job '{name}'", e
            )

        rows_deleted = getattr(result, 'rowcount', 0)
        if rows_deleted > 0:
            self.logger.info(f"Removed job '{name}'")
            return True
        self.logger.debug(f"No job named '{name}' to remove")
        return False

    async def purge(self, query: Optional[Mapping[str, Any]] = None) -> int:
        filters = validate_purge_query(query)
        await self.initialize()

        stmt = delete(JobModel)
        for key, value in filters.items():
            column = getattr(JobModel, key)
            stmt = stmt.where(column.is_(None) if value is None else column == value)

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except _STORE_EXCEPTIONS as e:
            self._raise_store_error(StoreErrorCode.DELETE_FAILED, 'Failed to purge jobs', e)

        purged = getattr(result, 'rowcount', 0)
        self.logger.info(f'Purged {purged} job(s)')
        return purged
