from __future__ import annotations
import bisect
from datetime import datetime
from typing import Iterable, Iterator

from chimes.core.models.job import Job


class WorkingSet:
    """
    A scheduler process's private cache of jobs due within the reload horizon.

    Kept sorted by next_run_at ascending. Jobs without a next_run_at can never
    become due and are not stored.
    """

    def __init__(self) -> None:
        self._jobs: list[Job] = []

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs))

    def __contains__(self, name: object) -> bool:
        return any(job.name == name for job in self._jobs)

    def snapshot(self) -> list[Job]:
        return list(self._jobs)

    def replace(self, jobs: Iterable[Job]) -> None:
        """Wholesale replace the contents (used on reload)."""
        schedulable = [job for job in jobs if job.next_run_at is not None]
        schedulable.sort(key=_sort_key)
        self._jobs = schedulable

    def insert(self, job: Job) -> bool:
        """Insert in next_run_at order. Returns False when the job has no next run."""
        if job.next_run_at is None:
            return False
        bisect.insort(self._jobs, job, key=_sort_key)
        return True

    def remove(self, job_id: int | None) -> bool:
        for ix, job in enumerate(self._jobs):
            if job.id == job_id:
                del self._jobs[ix]
                return True
        return False

    def remove_by_name(self, name: str) -> bool:
        for ix, job in enumerate(self._jobs):
            if job.name == name:
                del self._jobs[ix]
                return True
        return False

    def due(self, now: datetime) -> list[Job]:
        """Jobs whose next_run_at is strictly before now, earliest first."""
        due_jobs: list[Job] = []
        for job in self._jobs:
            if not job.is_due(now):
                break
            due_jobs.append(job)
        return due_jobs


def _sort_key(job: Job) -> datetime:
    # replace()/insert() filter out None before sorting
    assert job.next_run_at is not None
    return job.next_run_at
