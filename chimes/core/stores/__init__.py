from chimes.core.stores.base import JobStore
from chimes.core.stores.memory import MemoryJobStore
from chimes.core.stores.postgres import PostgresJobStore

__all__ = [
    'JobStore',
    'MemoryJobStore',
    'PostgresJobStore',
]
