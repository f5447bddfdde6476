"""Rust-style error display for chimes validation and store errors."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for job creation and configuration errors.

    Organized by category:
    - C100-C199: Job definition errors
    - C200-C299: Config/store/CLI errors
    """

    # Job definition (C100-C199)
    JOB_DUPLICATE_NAME = 'C100'
    JOB_MISSING_CRON_EXPRESSION = 'C101'
    JOB_INVALID_EXPRESSION = 'C102'
    JOB_INVALID_OPTIONS = 'C103'

    # Config/store (C200-C299)
    CONFIG_INVALID_SCHEDULER = 'C200'
    STORE_INVALID_URL = 'C201'
    CLI_INVALID_ARGS = 'C202'


class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'


class _NoColors:
    """No-op color codes for non-TTY output."""

    RESET = ''
    BOLD = ''
    RED = ''
    BLUE = ''
    GREEN = ''


def _should_use_colors() -> bool:
    """Determine if colors should be used in output."""
    if os.environ.get('CHIMES_FORCE_COLOR', '').lower() in ('1', 'true', 'yes'):
        return True

    # NO_COLOR standard (https://no-color.org/)
    if os.environ.get('NO_COLOR') is not None:
        return False

    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


@dataclass
class ChimesError(Exception):
    """Base exception for chimes job and configuration errors.

    Formats as:

        error[C100]: job 'nightly' already exists
           = note: job names are unique within a store

           = help:
                remove the existing job first or pick another name
    """

    message: str
    code: ErrorCode | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def with_note(self, note: str) -> ChimesError:
        """Add a note to the error (fluent API)."""
        self.notes.append(note)
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Format the error in Rust style."""
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        code_part = f'[{self.code.value}]' if self.code else ''
        lines: list[str] = [
            f'{c.BOLD}{c.RED}error{code_part}:{c.RESET} {self.message}'
        ]

        for note in self.notes:
            note_lines = note.split('\n')
            lines.append(
                f'   {c.BLUE}={c.RESET} {c.BOLD}{c.BLUE}note{c.RESET}: {note_lines[0]}'
            )
            for note_line in note_lines[1:]:
                lines.append(f'          {note_line}')

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.GREEN}help{c.RESET}:')
            for help_line in self.help_text.split('\n'):
                lines.append(f'        {help_line}')

        return '\n'.join(lines)

    def __str__(self) -> str:
        """Plain text (no ANSI colors) so the message is safe for logs."""
        return self.format_rust_style(use_colors=False)


# =============================================================================
# Specific Error Classes
# =============================================================================


@dataclass
class ConfigurationError(ChimesError):
    """Raised when scheduler/store configuration or job options are invalid."""

    pass


@dataclass
class DuplicateNameError(ChimesError):
    """Raised when a job with the same name already exists in the store."""

    pass


@dataclass
class MissingCronExpressionError(ChimesError):
    """Raised when a recurring job is created without a cron expression."""

    pass


@dataclass
class InvalidExpressionError(ChimesError):
    """Raised when a cron expression (or its timezone) cannot be evaluated."""

    pass


def duplicate_name_error(name: str) -> DuplicateNameError:
    return DuplicateNameError(
        message=f"job '{name}' already exists",
        code=ErrorCode.JOB_DUPLICATE_NAME,
        notes=['job names are unique within a store'],
        help_text='remove the existing job first or pick another name',
    )


# =============================================================================
# Store errors
# =============================================================================


class StoreErrorCode(str, Enum):
    """Categorized job store failure codes."""

    SCHEMA_INIT_FAILED = 'SCHEMA_INIT_FAILED'
    CREATE_FAILED = 'CREATE_FAILED'
    LOAD_FAILED = 'LOAD_FAILED'
    CLAIM_FAILED = 'CLAIM_FAILED'
    QUERY_FAILED = 'QUERY_FAILED'
    DELETE_FAILED = 'DELETE_FAILED'
    CLOSE_FAILED = 'CLOSE_FAILED'


class StoreError(Exception):
    """Operational failure of a job store call.

    Fields:
        code: which operation category failed
        message: human-readable description
        retryable: whether the same call may succeed if repeated later
        exception: the original cause (if any)
    """

    def __init__(
        self,
        code: StoreErrorCode,
        message: str,
        *,
        retryable: bool = False,
        exception: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.exception = exception

    def __str__(self) -> str:
        level = 'transient' if self.retryable else 'permanent'
        return f'{self.code.value} ({level}): {self.message}'
