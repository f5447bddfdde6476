from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from chimes.core.errors import duplicate_name_error
from chimes.core.logging import get_logger
from chimes.core.models.job import ClaimRequest, ClaimResult, Job
from chimes.core.stores.base import JobStore, validate_purge_query

logger = get_logger('store.memory')


class MemoryJobStore(JobStore):
    """
    In-process job store.

    Shared by every Scheduler created on the same event loop, which makes it
    suitable for tests, demos and single-process deployments. The marker
    comparison and the write in claim() run without an await in between, so
    the compare-and-swap is atomic with respect to all coroutines on the loop.

    Jobs are copied on the way in and out; callers never alias stored rows.
    """

    def __init__(self) -> None:
        self._jobs: dict[int, Job] = {}
        self._next_id = 1

    async def create(self, job: Job) -> Job:
        await asyncio.sleep(0)
        if any(existing.name == job.name for existing in self._jobs.values()):
            raise duplicate_name_error(job.name)

        stored = job.model_copy(update={'id': self._next_id}, deep=True)
        self._jobs[stored.id] = stored  # type: ignore[index]
        self._next_id += 1
        logger.debug(f"Created job '{stored.name}' (id={stored.id})")
        return stored.model_copy(deep=True)

    async def load_due(
        self, horizon_seconds: int, now: Optional[datetime] = None
    ) -> list[Job]:
        await asyncio.sleep(0)
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(seconds=horizon_seconds)
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if job.active
            and job.next_run_at is not None
            and job.next_run_at <= horizon
            and job.start_date <= now
            and (job.end_date is None or job.end_date >= now)
        ]

    async def claim(self, request: ClaimRequest) -> ClaimResult:
        # Interleave point for concurrent claimers
        await asyncio.sleep(0)

        current = self._jobs.get(request.job_id)
        if current is None or current.last_run_marker != request.expected_marker:
            return ClaimResult.lost()

        updated = current.model_copy(
            update={
                'next_run_at': request.next_run_at,
                'active': request.active,
                'last_run_marker': request.new_marker,
            }
        )
        self._jobs[request.job_id] = updated
        return ClaimResult.won(updated.model_copy(deep=True))

    async def find_by_name(self, name: str) -> Optional[Job]:
        await asyncio.sleep(0)
        for job in self._jobs.values():
            if job.name == name:
                return job.model_copy(deep=True)
        return None

    async def remove_by_name(self, name: str) -> bool:
        await asyncio.sleep(0)
        for job_id, job in list(self._jobs.items()):
            if job.name == name:
                del self._jobs[job_id]
                logger.debug(f"Removed job '{name}'")
                return True
        return False

    async def purge(self, query: Optional[Mapping[str, Any]] = None) -> int:
        filters = validate_purge_query(query)
        await asyncio.sleep(0)
        doomed = [
            job_id
            for job_id, job in self._jobs.items()
            if all(getattr(job, key) == value for key, value in filters.items())
        ]
        for job_id in doomed:
            del self._jobs[job_id]
        if doomed:
            logger.info(f'Purged {len(doomed)} job(s)')
        return len(doomed)
