"""chimes - a multi-instance, poll-based job scheduler"""

from .core.scheduler import Scheduler, SchedulingEngine, EventDispatcher, next_occurrence
from .core.models.config import SchedulerConfig
from .core.models.job import Job, JobOptions, ClaimRequest, ClaimResult
from .core.models.store import PostgresConfig
from .core.stores import JobStore, MemoryJobStore, PostgresJobStore
from .core.errors import (
    ChimesError,
    ConfigurationError,
    DuplicateNameError,
    ErrorCode,
    InvalidExpressionError,
    MissingCronExpressionError,
    StoreError,
    StoreErrorCode,
)

__all__ = [
    # Core
    'Scheduler',
    'SchedulingEngine',
    'EventDispatcher',
    'SchedulerConfig',
    'next_occurrence',
    # Jobs
    'Job',
    'JobOptions',
    'ClaimRequest',
    'ClaimResult',
    # Stores
    'JobStore',
    'MemoryJobStore',
    'PostgresJobStore',
    'PostgresConfig',
    # Errors
    'ChimesError',
    'ConfigurationError',
    'DuplicateNameError',
    'ErrorCode',
    'InvalidExpressionError',
    'MissingCronExpressionError',
    'StoreError',
    'StoreErrorCode',
]
