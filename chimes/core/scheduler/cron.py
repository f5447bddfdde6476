from __future__ import annotations
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from croniter import croniter
from chimes.core.defaults import DEFAULT_TIMEZONE
from chimes.core.errors import ErrorCode, InvalidExpressionError


def next_occurrence(
    expression: str, reference: datetime, tz_str: str = DEFAULT_TIMEZONE
) -> datetime:
    """
    Calculate the next instant matching a cron expression.

    Accepts standard 5-field expressions ('0 15 * * *') and 6-field
    expressions whose first field is seconds ('*/5 * * * * *').

    Args:
        expression: Cron expression
        reference: Calculate the next match strictly after this instant (must be tz-aware)
        tz_str: Timezone the expression's wall-clock fields are evaluated in

    Returns:
        Next run time as UTC-aware datetime

    Raises:
        InvalidExpressionError: If the expression or timezone cannot be evaluated
        ValueError: If reference is naive
    """
    if reference.tzinfo is None:
        raise ValueError('reference must be timezone-aware')

    tz = _resolve_timezone(expression, tz_str)
    local_reference = reference.astimezone(tz)

    try:
        iterator = croniter(expression, local_reference, second_at_beginning=True)
        next_run = iterator.get_next(datetime)
    except (ValueError, KeyError, TypeError) as e:
        # croniter's error hierarchy derives from ValueError
        raise _invalid_expression(expression, e) from e

    if next_run.tzinfo is None:
        raise RuntimeError('Calculated next_run is not timezone-aware')

    return next_run.astimezone(timezone.utc)


def validate_expression(expression: str, tz_str: str = DEFAULT_TIMEZONE) -> None:
    """Raise InvalidExpressionError if the expression cannot produce a next run."""
    next_occurrence(expression, datetime.now(timezone.utc), tz_str)


def upcoming(
    expression: str, reference: datetime, count: int, tz_str: str = DEFAULT_TIMEZONE
) -> list[datetime]:
    """Return the next `count` occurrences after reference, chained."""
    runs: list[datetime] = []
    cursor = reference
    for _ in range(count):
        cursor = next_occurrence(expression, cursor, tz_str)
        runs.append(cursor)
    return runs


def _resolve_timezone(expression: str, tz_str: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidExpressionError(
            message=f"invalid timezone '{tz_str}' for cron expression '{expression}'",
            code=ErrorCode.JOB_INVALID_EXPRESSION,
            notes=[f'zoneinfo error: {e}'],
            help_text="use an IANA name such as 'UTC' or 'America/New_York'",
        ) from e


def _invalid_expression(expression: str, cause: BaseException) -> InvalidExpressionError:
    return InvalidExpressionError(
        message=f"invalid cron expression '{expression}'",
        code=ErrorCode.JOB_INVALID_EXPRESSION,
        notes=[f'parser error: {cause}'],
        help_text=(
            "use 5 fields 'min hour dom month dow' (e.g. '0 15 * * *')\n"
            "or 6 fields with leading seconds (e.g. '*/5 * * * * *')"
        ),
    )
