from __future__ import annotations
import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from chimes.core.errors import (
    ConfigurationError,
    ErrorCode,
    InvalidExpressionError,
    MissingCronExpressionError,
    duplicate_name_error,
)
from chimes.core.logging import get_logger
from chimes.core.models.config import SchedulerConfig
from chimes.core.models.job import Job, JobOptions, next_marker
from chimes.core.scheduler.cron import next_occurrence
from chimes.core.scheduler.dispatcher import EventDispatcher, JobHandler
from chimes.core.scheduler.engine import SchedulingEngine, TickReport
from chimes.core.stores.base import JobStore

logger = get_logger('scheduler')


def _check_within_window(job: Job, first_run: datetime) -> None:
    """Reject a first run outside [start_date, end_date]."""
    if first_run < job.start_date or (
        job.end_date is not None and first_run > job.end_date
    ):
        raise ConfigurationError(
            message=f"job '{job.name}' would first run outside its validity window",
            code=ErrorCode.JOB_INVALID_OPTIONS,
            notes=[
                f'first run: {first_run.isoformat()}',
                f'window: {job.start_date.isoformat()} .. '
                f"{job.end_date.isoformat() if job.end_date else 'unbounded'}",
            ],
            help_text='move start_date/end_date so the window contains the first run',
        )


class Scheduler:
    """
    Poll-based job scheduler safe to run in many processes against one store.

    Responsibilities:
    1. Create and remove jobs (one-time or cron-recurring)
    2. Drive the scheduling engine's tick loop with jittered pacing
    3. Expose per-channel subscriptions for fired jobs

    Lifecycle: stopped -> start() -> running -> stop() -> stopped.
    """

    def __init__(self, store: JobStore, config: Optional[SchedulerConfig] = None):
        self.store = store
        self.config = config or SchedulerConfig()
        self.dispatcher = EventDispatcher(self.config.emitting_channels)
        self.engine = SchedulingEngine(store, self.dispatcher, self.config)
        self._running = False
        self._stop = asyncio.Event()
        self._loop_task: Optional[asyncio.Task[None]] = None

        logger.info(
            f'Scheduler initialized, reload_interval={self.config.reload_interval_seconds}s, '
            f'default_channel={self.config.default_channel_name!r}, '
            f'emitting_channels={self.config.emitting_channels or "all"}'
        )

    @property
    def running(self) -> bool:
        return self._running

    # ----------------- Job management -----------------

    async def _build_job(
        self,
        name: str,
        options: Optional[JobOptions],
        now: datetime,
    ) -> Job:
        """Fill defaults and reject duplicate names before persistence."""
        opts = options or JobOptions()

        if await self.store.find_by_name(name) is not None:
            raise duplicate_name_error(name)

        return Job(
            name=name,
            channel=opts.channel or self.config.default_channel_name,
            active=True,
            last_run_marker=next_marker(0, now),
            start_date=opts.start_date or now,
            end_date=opts.end_date,
            params=dict(opts.params),
        )

    async def create_recurring_job(
        self,
        name: str,
        cron_expression: str,
        options: Optional[JobOptions] = None,
    ) -> Job:
        """
        Create a job that fires on every match of a cron expression.

        Raises:
            MissingCronExpressionError: If cron_expression is empty
            InvalidExpressionError: If cron_expression cannot be parsed
            DuplicateNameError: If a job with this name exists
        """
        if not cron_expression or not cron_expression.strip():
            raise MissingCronExpressionError(
                message='cron expression is required for creating a recurring job',
                code=ErrorCode.JOB_MISSING_CRON_EXPRESSION,
                notes=[f"job '{name}' was given an empty expression"],
                help_text="pass an expression such as '0 15 * * *', or use create_onetime_job()",
            )

        now = datetime.now(timezone.utc)
        # Validated before touching the store
        try:
            next_run = next_occurrence(cron_expression, now, self.config.timezone)
        except InvalidExpressionError as e:
            raise e.with_note(f"job '{name}' was not created")

        job = await self._build_job(name, options, now)
        if job.start_date > now:
            # An occurrence exactly at start_date counts
            next_run = next_occurrence(
                cron_expression,
                job.start_date - timedelta(microseconds=1),
                self.config.timezone,
            )
        _check_within_window(job, next_run)
        job = job.model_copy(
            update={'cron_expression': cron_expression, 'next_run_at': next_run}
        )
        return await self.store.create(job)

    async def create_onetime_job(
        self,
        name: str,
        run_at: datetime,
        options: Optional[JobOptions] = None,
    ) -> Job:
        """
        Create a job that fires once at run_at.

        Raises:
            ConfigurationError: If run_at is naive
            DuplicateNameError: If a job with this name exists
        """
        if run_at.tzinfo is None:
            raise ConfigurationError(
                message='run_at must be timezone-aware',
                code=ErrorCode.JOB_INVALID_OPTIONS,
                notes=[f"job '{name}' run_at={run_at.isoformat()}"],
                help_text='pass e.g. datetime.now(timezone.utc) + timedelta(minutes=5)',
            )

        now = datetime.now(timezone.utc)
        run_at = run_at.astimezone(timezone.utc)
        if options is None or options.start_date is None:
            # A run_at in the past fires on the first tick
            options = (options or JobOptions()).model_copy(
                update={'start_date': min(now, run_at)}
            )
        job = await self._build_job(name, options, now)
        _check_within_window(job, run_at)
        job = job.model_copy(update={'next_run_at': run_at})
        return await self.store.create(job)

    async def remove_job_by_name(self, name: str) -> bool:
        """Delete a job from the store and this process's working set."""
        removed = await self.store.remove_by_name(name)
        self.engine.evict(name)
        return removed

    async def find_job(self, name: str) -> Optional[Job]:
        return await self.store.find_by_name(name)

    async def purge_jobs(self, query: Optional[Mapping[str, Any]] = None) -> int:
        purged = await self.store.purge(query)
        if not query:
            self.engine.working_set.replace([])
        return purged

    # ----------------- Subscriptions -----------------

    def on(self, channel: str, handler: JobHandler) -> None:
        self.dispatcher.subscribe(channel, handler)

    def off(self, channel: str, handler: JobHandler) -> bool:
        return self.dispatcher.unsubscribe(channel, handler)

    def listen(self, channel: str) -> asyncio.Queue[Job]:
        return self.dispatcher.listen(channel)

    def remove_all_listeners(self) -> None:
        self.dispatcher.clear()

    # ----------------- Lifecycle -----------------

    def start(self) -> None:
        """
        Start the tick loop on the running event loop. No-op when running.

        A loop task that has not exited yet (stop() during an in-flight tick)
        is resumed rather than replaced.
        """
        if self._running:
            return

        self.engine.reset_reload_clock()
        self._stop.clear()
        self._running = True
        if self._loop_task is not None and not self._loop_task.done():
            logger.info('Resuming scheduler loop')
            return

        logger.info('Starting scheduler loop')
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run_loop(), name='chimes-scheduler-loop'
        )

    def stop(self) -> None:
        """Prevent the next tick. A tick in flight completes; the pause is cut short."""
        if not self._running:
            return
        logger.info('Stopping scheduler')
        self._running = False
        self._stop.set()

    def request_stop(self) -> None:
        """Request scheduler to stop gracefully (signal-handler friendly)."""
        self.stop()

    async def wait_stopped(self) -> None:
        if self._loop_task is not None:
            await self._loop_task

    async def run_forever(self) -> None:
        """Initialize the store, run until stopped, then close the store."""
        try:
            await self.store.initialize()
            self.start()
            await self.wait_stopped()
        finally:
            self.stop()
            await self.store.close()
            logger.info('Scheduler stopped')

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one engine tick outside of the loop (tests, manual driving)."""
        return await self.engine.tick(now)

    def _next_delay_seconds(self) -> float:
        jitter_ms = random.uniform(self.config.jitter_min_ms, self.config.jitter_max_ms)
        return (jitter_ms + self.config.tick_delay_ms) / 1000.0

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.engine.tick()
            except Exception as e:
                logger.error(f'Error in scheduler loop: {e}', exc_info=True)

            if not self._running:
                break

            # Wait for the jittered delay or stop signal; _running decides the exit
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._next_delay_seconds())
            except asyncio.TimeoutError:
                continue
