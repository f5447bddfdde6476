"""
Job store contract.

The scheduling engine only needs a narrow set of operations from a
persistence backend. Any backend (relational, key-value, in-memory)
implementing these with the stated atomicity is a valid substitute.

Result propagation policy
-------------------------
* Validation outcomes are exceptions from ``chimes.core.errors``:
  ``create`` raises ``DuplicateNameError`` when the name is taken.
* A lost claim is not an error: ``claim`` returns ``ClaimResult.lost()``.
* Operational failures (connection loss, SQL errors) are raised as
  ``StoreError`` with a ``retryable`` flag. The engine logs them and moves
  on to the next job; creation-time callers receive them directly.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping, Optional

from chimes.core.models.job import ClaimRequest, ClaimResult, Job

# Columns a purge() query may filter on.
PURGE_FIELDS: frozenset[str] = frozenset(
    {
        'id',
        'name',
        'channel',
        'active',
        'cron_expression',
        'next_run_at',
        'last_run_marker',
        'start_date',
        'end_date',
    }
)


def validate_purge_query(query: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Return the query as a dict, rejecting keys that are not job columns."""
    if not query:
        return {}
    unknown = sorted(set(query) - PURGE_FIELDS)
    if unknown:
        raise ValueError(
            f'unknown purge field(s): {unknown}; allowed: {sorted(PURGE_FIELDS)}'
        )
    return dict(query)


class JobStore(ABC):
    """Persistence operations required by the scheduler."""

    async def initialize(self) -> None:
        """Prepare the backend (schema, pools). Safe to call repeatedly."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None

    @abstractmethod
    async def create(self, job: Job) -> Job:
        """
        Persist a new job and return its stored form (with id assigned).

        Raises:
            DuplicateNameError: If a job with the same name exists
        """

    @abstractmethod
    async def load_due(
        self, horizon_seconds: int, now: Optional[datetime] = None
    ) -> list[Job]:
        """
        Return active jobs due within the horizon and inside their validity window.

        A job qualifies when next_run_at <= now + horizon, start_date <= now
        and end_date is None or >= now. Order is unspecified.
        """

    @abstractmethod
    async def claim(self, request: ClaimRequest) -> ClaimResult:
        """
        Apply the request's new state only if the row's marker still equals
        request.expected_marker, as one atomic conditional update.
        """

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Job]:
        """Return the job with the given name, or None."""

    @abstractmethod
    async def remove_by_name(self, name: str) -> bool:
        """Delete the named job. Returns True if a row was deleted."""

    @abstractmethod
    async def purge(self, query: Optional[Mapping[str, Any]] = None) -> int:
        """
        Delete jobs whose columns equal every item of query (all jobs when empty).

        Administrative; not used by the engine's hot path.

        Returns:
            Number of deleted jobs
        """
