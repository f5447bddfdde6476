"""
Scheduler module for firing stored jobs.

Main components:
- Scheduler: Lifecycle controller and public job API
- SchedulingEngine: Reload, due-detection and claim/emit protocol
- EventDispatcher: Channel-keyed delivery of fired jobs
- next_occurrence: Cron next-run calculation

Example usage:
    from chimes.core.scheduler import Scheduler
    from chimes.core.stores import PostgresJobStore

    scheduler = Scheduler(PostgresJobStore.from_url(url))
    scheduler.on('jobs', handle_job)
    await scheduler.run_forever()
"""

from chimes.core.scheduler.service import Scheduler
from chimes.core.scheduler.engine import SchedulingEngine, TickReport
from chimes.core.scheduler.dispatcher import EventDispatcher
from chimes.core.scheduler.cron import next_occurrence, validate_expression
from chimes.core.scheduler.working_set import WorkingSet

__all__ = [
    'Scheduler',
    'SchedulingEngine',
    'TickReport',
    'EventDispatcher',
    'WorkingSet',
    'next_occurrence',
    'validate_expression',
]
