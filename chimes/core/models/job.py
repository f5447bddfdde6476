from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, model_validator
from typing_extensions import Self
from chimes.core.errors import (
    ConfigurationError,
    ErrorCode,
)


class Job(BaseModel):
    """
    A schedulable unit of work as stored in a job store.

    Fields:
        - id: Store-assigned identity (None before first persistence)
        - name: Unique key within the store
        - channel: Channel the job's occurrences are emitted on
        - active: Whether the job may still fire
        - cron_expression: Present for recurring jobs, None for one-time jobs
        - next_run_at: Next due instant (UTC-aware), None means never again
        - last_run_marker: Optimistic-concurrency version token, changes on every claim
        - start_date / end_date: Validity window (end_date None = unbounded)
        - params: Free-form parameters delivered with every notification
    """

    id: Optional[int] = Field(default=None, description='Store-assigned identity')
    name: str = Field(min_length=1, description='Unique job name')
    channel: str = Field(min_length=1, description='Emission channel')
    active: bool = Field(default=True, description='Whether the job may still fire')
    cron_expression: Optional[str] = Field(
        default=None, description='Cron expression for recurring jobs'
    )
    next_run_at: Optional[datetime] = Field(default=None, description='Next due instant')
    last_run_marker: int = Field(default=0, description='Claim version token')
    start_date: datetime = Field(description='Start of the validity window')
    end_date: Optional[datetime] = Field(
        default=None, description='End of the validity window'
    )
    params: dict[str, Any] = Field(
        default_factory=dict, description='Free-form job parameters'
    )

    @property
    def is_recurring(self) -> bool:
        return bool(self.cron_expression)

    def is_due(self, now: datetime) -> bool:
        """True when the job's next run lies strictly before now."""
        return self.next_run_at is not None and self.next_run_at < now


class JobOptions(BaseModel):
    """
    Optional values applied to a new job.

    Fields:
        - start_date: Start of the validity window (default: creation time)
        - end_date: End of the validity window (default: unbounded)
        - channel: Emission channel (default: scheduler's default_channel_name)
        - params: Free-form parameters attached to the job
    """

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    channel: Optional[str] = Field(default=None, min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_window(self) -> Self:
        """Ensure the window is timezone-aware and not inverted."""
        for label, value in (('start_date', self.start_date), ('end_date', self.end_date)):
            if value is not None and value.tzinfo is None:
                raise ConfigurationError(
                    message=f'{label} must be timezone-aware',
                    code=ErrorCode.JOB_INVALID_OPTIONS,
                    notes=[f'got naive datetime: {value.isoformat()}'],
                    help_text='pass datetimes with tzinfo, e.g. datetime.now(timezone.utc)',
                )
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.end_date < self.start_date
        ):
            raise ConfigurationError(
                message='end_date precedes start_date',
                code=ErrorCode.JOB_INVALID_OPTIONS,
                notes=[
                    f'start_date: {self.start_date.isoformat()}',
                    f'end_date: {self.end_date.isoformat()}',
                ],
                help_text='end_date must be at or after start_date',
            )
        return self


@dataclass(slots=True, frozen=True)
class ClaimRequest:
    """Compare-and-swap request sent to JobStore.claim().

    The store applies (next_run_at, active, new_marker) only while the row's
    marker still equals expected_marker.
    """

    job_id: int
    expected_marker: int
    new_marker: int
    next_run_at: Optional[datetime]
    active: bool


@dataclass(slots=True, frozen=True)
class ClaimResult:
    """Outcome of a claim: the updated job on success, None when lost."""

    success: bool
    job: Optional[Job] = None

    @classmethod
    def won(cls, job: Job) -> ClaimResult:
        return cls(success=True, job=job)

    @classmethod
    def lost(cls) -> ClaimResult:
        return cls(success=False, job=None)


def next_marker(previous: int, now: datetime) -> int:
    """Return a marker strictly greater than previous, based on now in ms."""
    return max(int(now.timestamp() * 1000), previous + 1)
