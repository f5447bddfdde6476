from __future__ import annotations
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import BaseModel, Field, model_validator
from typing_extensions import Self
from chimes.core.defaults import (
    DEFAULT_CHANNEL_NAME,
    DEFAULT_JITTER_MAX_MS,
    DEFAULT_JITTER_MIN_MS,
    DEFAULT_RELOAD_INTERVAL_SECONDS,
    DEFAULT_TICK_DELAY_MS,
    DEFAULT_TIMEZONE,
)
from chimes.core.errors import ConfigurationError, ErrorCode


class SchedulerConfig(BaseModel):
    """
    Scheduler configuration.

    Fields:
        - default_channel_name: Channel for jobs created without one (default: 'jobs')
        - reload_interval_seconds: How often the working set is reloaded from the store,
          also the load horizon (1-3600 seconds)
        - emitting_channels: Optional allow-list; None or empty emits on every channel
        - timezone: Timezone cron expressions are evaluated in (default: UTC)
        - jitter_min_ms / jitter_max_ms: Bounds of the randomized pause between ticks
        - tick_delay_ms: Fixed pause added to the jitter
    """

    default_channel_name: str = Field(
        default=DEFAULT_CHANNEL_NAME, min_length=1, description='Default emission channel'
    )
    reload_interval_seconds: int = Field(
        default=DEFAULT_RELOAD_INTERVAL_SECONDS,
        ge=1,
        le=3600,
        description='Working-set reload interval and load horizon (1-3600 seconds)',
    )
    emitting_channels: Optional[list[str]] = Field(
        default=None, description='Channels this scheduler emits on (None = all)'
    )
    timezone: str = Field(
        default=DEFAULT_TIMEZONE, description='Timezone for cron evaluation'
    )
    jitter_min_ms: int = Field(default=DEFAULT_JITTER_MIN_MS, ge=0)
    jitter_max_ms: int = Field(default=DEFAULT_JITTER_MAX_MS, ge=0)
    tick_delay_ms: int = Field(default=DEFAULT_TICK_DELAY_MS, ge=0)

    @model_validator(mode='after')
    def validate_scheduler(self) -> Self:
        """Ensure jitter bounds are ordered and the timezone exists."""
        if self.jitter_min_ms > self.jitter_max_ms:
            raise ConfigurationError(
                message='jitter_min_ms is greater than jitter_max_ms',
                code=ErrorCode.CONFIG_INVALID_SCHEDULER,
                notes=[f'jitter_min_ms={self.jitter_min_ms}, jitter_max_ms={self.jitter_max_ms}'],
                help_text='set jitter_min_ms <= jitter_max_ms',
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                message=f"unknown timezone '{self.timezone}'",
                code=ErrorCode.CONFIG_INVALID_SCHEDULER,
                notes=[f'zoneinfo error: {e}'],
                help_text="use an IANA name such as 'UTC' or 'Europe/Berlin'",
            ) from e
        return self
