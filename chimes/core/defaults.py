"""Shared default constants for the chimes library."""

# Channel used when a job is created without an explicit channel.
DEFAULT_CHANNEL_NAME: str = 'jobs'

# Seconds between working-set reloads. Also the load_due() horizon, so any
# job due before the next reload is already resident.
DEFAULT_RELOAD_INTERVAL_SECONDS: int = 10

# Randomized pause between ticks.
DEFAULT_JITTER_MIN_MS: int = 500
DEFAULT_JITTER_MAX_MS: int = 900

# Fixed pause added on top of the jitter.
DEFAULT_TICK_DELAY_MS: int = 100

DEFAULT_TIMEZONE: str = 'UTC'
