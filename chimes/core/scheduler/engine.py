from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from chimes.core.logging import get_logger
from chimes.core.models.config import SchedulerConfig
from chimes.core.models.job import ClaimRequest, Job, next_marker
from chimes.core.scheduler.cron import next_occurrence
from chimes.core.scheduler.dispatcher import EventDispatcher
from chimes.core.scheduler.working_set import WorkingSet
from chimes.core.stores.base import JobStore

logger = get_logger('engine')


@dataclass
class TickReport:
    """What one tick did. Used for logging and tests."""

    reloaded: bool = False
    due: int = 0
    claimed: int = 0
    lost: int = 0
    failed: int = 0


class SchedulingEngine:
    """
    Reload, due-detection and claim/emit protocol for one scheduler process.

    Responsibilities:
    1. Reload due jobs from the store into the working set once per interval
    2. Detect jobs whose next_run_at has passed
    3. Claim each due job through the store's compare-and-swap
    4. Emit claimed jobs and re-insert them with their new schedule

    Correctness across processes rests on JobStore.claim() alone: only one
    caller can match the marker it observed, so only one emits.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: EventDispatcher,
        config: SchedulerConfig,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self.working_set = WorkingSet()
        self.last_load_time: Optional[datetime] = None

    @property
    def reload_interval(self) -> timedelta:
        return timedelta(seconds=self.config.reload_interval_seconds)

    def needs_reload(self, now: datetime) -> bool:
        if self.last_load_time is None:
            return True
        return now > self.last_load_time + self.reload_interval

    def reset_reload_clock(self) -> None:
        """Force a reload on the next tick."""
        self.last_load_time = None

    async def reload(self, now: datetime) -> bool:
        """
        Replace the working set with the store's jobs due within one interval.

        The load clock advances even when the store fails, so a failing store
        is retried once per interval while the previous working set keeps
        being processed.

        Returns:
            True if the working set was replaced
        """
        self.last_load_time = now
        try:
            jobs = await self.store.load_due(self.config.reload_interval_seconds, now)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f'Failed to reload jobs, keeping {len(self.working_set)} cached job(s): {e}',
                exc_info=True,
            )
            return False

        self.working_set.replace(jobs)
        logger.debug(f'Loaded {len(self.working_set)} job(s) due within the horizon')
        return True

    def compute_next_state(
        self, job: Job, now: datetime
    ) -> tuple[Optional[datetime], bool]:
        """
        Calculate (next_run_at, active) to store if this process wins the claim.

        Recurring jobs evaluate their cron expression against now, never against
        the previous next_run_at. One-time jobs retire. A recurring job whose next
        run falls past end_date retires as well.
        """
        if not job.cron_expression:
            return (None, False)

        next_run = next_occurrence(job.cron_expression, now, self.config.timezone)
        if job.end_date is not None and next_run > job.end_date:
            logger.info(
                f"Job '{job.name}' next run {next_run} is past end_date {job.end_date}, retiring"
            )
            return (None, False)
        return (next_run, True)

    async def claim_and_dispatch(self, job: Job, now: datetime) -> bool:
        """
        Run the claim protocol for one due job.

        Returns:
            True if this process won the claim (and emitted), False if another
            process had already advanced the job
        """
        if job.id is None:
            raise ValueError(f"Job '{job.name}' has no id; it was never persisted")

        next_run, active = self.compute_next_state(job, now)
        request = ClaimRequest(
            job_id=job.id,
            expected_marker=job.last_run_marker,
            new_marker=next_marker(job.last_run_marker, now),
            next_run_at=next_run,
            active=active,
        )

        outcome = await self.store.claim(request)

        # Stale either way: it just fired or someone else fired it.
        self.working_set.remove(job.id)

        if not outcome.success or outcome.job is None:
            # Lost the race. Stay silent; the next reload brings the winner's state.
            logger.debug(f"Claim lost for job '{job.name}', evicted from working set")
            return False

        updated = outcome.job
        # Cached before handlers run so a handler can evict it
        self.working_set.insert(updated)
        delivered = await self.dispatcher.emit(updated)
        logger.info(
            f"Job '{job.name}' fired on '{updated.channel}' ({delivered} subscriber(s)), "
            f'next_run={updated.next_run_at}'
        )
        return True

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Reload if needed, then claim and emit every due job, earliest first."""
        now = now or datetime.now(timezone.utc)
        report = TickReport()

        if self.needs_reload(now):
            report.reloaded = await self.reload(now)

        due_jobs = self.working_set.due(now)
        report.due = len(due_jobs)

        for job in due_jobs:
            try:
                if await self.claim_and_dispatch(job, now):
                    report.claimed += 1
                else:
                    report.lost += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Isolated per job; it stays cached and is retried next tick.
                report.failed += 1
                logger.error(f"Error processing job '{job.name}': {e}", exc_info=True)

        if report.failed:
            logger.warning(
                f'{report.failed}/{report.due} due job(s) failed this tick; '
                f'remaining jobs were processed'
            )
        return report

    def evict(self, name: str) -> bool:
        """Drop a job from this process's working set."""
        return self.working_set.remove_by_name(name)
