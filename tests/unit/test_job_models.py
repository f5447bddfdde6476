"""Unit tests for Job, JobOptions, claim types and marker generation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from chimes.core.errors import ConfigurationError, ErrorCode
from chimes.core.models.job import ClaimResult, Job, JobOptions, next_marker


def _utc(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
) -> datetime:
    """Helper to construct a UTC-aware datetime."""
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def _job(**overrides: object) -> Job:
    fields: dict[str, object] = {
        'name': 'report',
        'channel': 'jobs',
        'start_date': _utc(2025, 1, 1),
    }
    fields.update(overrides)
    return Job(**fields)  # type: ignore[arg-type]


# =============================================================================
# Job
# =============================================================================


@pytest.mark.unit
class TestJob:
    """Tests for the Job model."""

    def test_defaults(self) -> None:
        job = _job()

        assert job.id is None
        assert job.active is True
        assert job.cron_expression is None
        assert job.next_run_at is None
        assert job.last_run_marker == 0
        assert job.params == {}

    def test_is_recurring(self) -> None:
        assert _job(cron_expression='0 15 * * *').is_recurring is True
        assert _job().is_recurring is False

    def test_is_due_is_strict(self) -> None:
        now = _utc(2025, 6, 1, 12)
        job = _job(next_run_at=now)

        assert job.is_due(now) is False
        assert job.is_due(now + timedelta(milliseconds=1)) is True

    def test_without_next_run_is_never_due(self) -> None:
        assert _job().is_due(_utc(2099, 1, 1)) is False

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _job(name='')

    def test_params_not_shared_between_instances(self) -> None:
        a = _job()
        b = _job(name='other')
        a.params['k'] = 1

        assert b.params == {}


# =============================================================================
# JobOptions
# =============================================================================


@pytest.mark.unit
class TestJobOptions:
    """Tests for JobOptions validation."""

    def test_all_optional(self) -> None:
        opts = JobOptions()

        assert opts.start_date is None
        assert opts.end_date is None
        assert opts.channel is None
        assert opts.params == {}

    def test_naive_start_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            JobOptions(start_date=datetime(2025, 1, 1))

        assert exc_info.value.code == ErrorCode.JOB_INVALID_OPTIONS
        assert 'start_date' in exc_info.value.message

    def test_naive_end_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            JobOptions(end_date=datetime(2025, 1, 1))

        assert 'end_date' in exc_info.value.message

    def test_inverted_window_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            JobOptions(start_date=_utc(2025, 2, 1), end_date=_utc(2025, 1, 1))

        assert exc_info.value.code == ErrorCode.JOB_INVALID_OPTIONS
        assert len(exc_info.value.notes) == 2

    def test_equal_bounds_allowed(self) -> None:
        opts = JobOptions(start_date=_utc(2025, 1, 1), end_date=_utc(2025, 1, 1))

        assert opts.start_date == opts.end_date


# =============================================================================
# ClaimResult / next_marker
# =============================================================================


@pytest.mark.unit
class TestClaimResult:
    """Tests for ClaimResult constructors."""

    def test_won_carries_job(self) -> None:
        job = _job(id=3)
        result = ClaimResult.won(job)

        assert result.success is True
        assert result.job is job

    def test_lost_has_no_job(self) -> None:
        result = ClaimResult.lost()

        assert result.success is False
        assert result.job is None


@pytest.mark.unit
class TestNextMarker:
    """Tests for next_marker()."""

    def test_uses_epoch_millis(self) -> None:
        now = _utc(2025, 6, 1, 12)

        assert next_marker(0, now) == int(now.timestamp() * 1000)

    def test_strictly_increases_when_clock_repeats(self) -> None:
        now = _utc(2025, 6, 1, 12)
        first = next_marker(0, now)

        assert next_marker(first, now) == first + 1

    def test_strictly_increases_when_clock_goes_backwards(self) -> None:
        now = _utc(2025, 6, 1, 12)
        first = next_marker(0, now)

        assert next_marker(first, now - timedelta(hours=1)) == first + 1
