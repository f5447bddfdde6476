# chimes/core/cli.py
"""
CLI for the chimes scheduler and job administration.

Module path resolution follows Celery's approach:
1. User provides dotted module path: `chimes scheduler app.scheduling:scheduler`
2. User is responsible for PYTHONPATH / running from correct directory
3. Convenience: if cwd has pyproject.toml, we add cwd to sys.path
"""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from chimes.core.errors import ChimesError, ConfigurationError, ErrorCode, StoreError
from chimes.core.logging import get_logger
from chimes.core.models.job import JobOptions
from chimes.core.scheduler import Scheduler
from chimes.core.scheduler.cron import upcoming
from chimes.core.utils.imports import import_file_path, setup_sys_path_from_cwd


def _parse_locator(locator: str) -> tuple[str, str | None]:
    """
    Parse a module locator into (module_path, attribute_name).

    Formats:
    - "app.scheduling:scheduler" -> ("app.scheduling", "scheduler")
    - "app.scheduling" -> ("app.scheduling", None)
    - "/path/to/file.py:scheduler" -> ("/path/to/file.py", "scheduler")
    """
    if ':' in locator:
        module_part, attr = locator.rsplit(':', 1)
        return (module_part, attr)
    return (locator, None)


def _is_file_path(path: str) -> bool:
    """Check if path looks like a file path (vs dotted module path)."""
    return path.endswith('.py') or os.path.sep in path or '/' in path


def discover_scheduler(module_locator: str) -> tuple[Scheduler, str]:
    """
    Import module and discover the Scheduler instance it defines.

    Returns:
        (scheduler_instance, variable_name)
    """
    logger = get_logger('cli')

    project_root = setup_sys_path_from_cwd()
    if project_root:
        logger.info(f'Added project root to sys.path: {project_root}')

    module_path, attr_name = _parse_locator(module_locator)

    if _is_file_path(module_path):
        if not module_path.endswith('.py'):
            module_path += '.py'
        module = import_file_path(os.path.realpath(module_path))
    else:
        try:
            module = importlib.import_module(module_path)
        except ModuleNotFoundError as e:
            raise ConfigurationError(
                message=f'module not found: {module_path}',
                code=ErrorCode.CLI_INVALID_ARGS,
                notes=[str(e), f'sys.path: {sys.path[:5]}...'],
                help_text=(
                    'ensure you are running from the correct directory\n'
                    'or set PYTHONPATH to include your project root'
                ),
            )
    module_name = module.__name__

    if attr_name:
        obj = getattr(module, attr_name, None)
        if not isinstance(obj, Scheduler):
            raise ConfigurationError(
                message=f"'{attr_name}' in module '{module_name}' is not a Scheduler instance",
                code=ErrorCode.CLI_INVALID_ARGS,
                notes=[f'got {type(obj).__name__}'],
                help_text='point the locator at a chimes.Scheduler, e.g. app.scheduling:scheduler',
            )
        scheduler, var_name = obj, attr_name
    else:
        found = [
            (obj, name)
            for name, obj in vars(module).items()
            if not name.startswith('_') and isinstance(obj, Scheduler)
        ]
        if len(found) != 1:
            raise ConfigurationError(
                message=(
                    f'no Scheduler instance found in {module_name}'
                    if not found
                    else f'multiple Scheduler instances found in {module_name}'
                ),
                code=ErrorCode.CLI_INVALID_ARGS,
                notes=[f'candidates: {[name for _, name in found]}'] if found else [],
                help_text='specify the variable name: module.path:variable',
            )
        scheduler, var_name = found[0]

    logger.info(f"Discovered scheduler '{var_name}' from {module_name}")
    return scheduler, var_name


def setup_logging(loglevel: str) -> None:
    """Configure logging level globally."""
    from chimes.core.logging import set_default_level

    level = getattr(logging, loglevel.upper(), logging.INFO)
    set_default_level(level)

    for name in logging.Logger.manager.loggerDict:
        if isinstance(name, str) and name.startswith('chimes.'):
            lgr = logging.getLogger(name)
            lgr.setLevel(level)
            for handler in lgr.handlers:
                handler.setLevel(level)


def _parse_datetime(value: str) -> datetime:
    """ISO-8601 datetime; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f'invalid ISO-8601 datetime: {value!r}') from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _job_options(args: argparse.Namespace) -> JobOptions:
    return JobOptions(
        start_date=args.start,
        end_date=args.end,
        channel=args.channel,
    )


def _run_admin(
    args: argparse.Namespace,
    action: Callable[[Scheduler], Awaitable[Any]],
) -> Any:
    """Discover the scheduler, run one store action, close the store."""
    logger = get_logger('cli')
    setup_logging(args.loglevel)

    async def _run() -> Any:
        scheduler, _ = discover_scheduler(args.module)
        try:
            return await action(scheduler)
        finally:
            await scheduler.store.close()

    try:
        return asyncio.run(_run())
    except ChimesError as e:
        logger.error(str(e))
        sys.exit(1)
    except StoreError as e:
        logger.error(f'Store error: {e}')
        sys.exit(1)


def scheduler_command(args: argparse.Namespace) -> None:
    """Handle scheduler command."""
    logger = get_logger('cli')

    loglevel: str = args.loglevel
    setup_logging(loglevel)
    logger.info(f'Starting scheduler with loglevel={loglevel}')

    try:
        scheduler, _var_name = discover_scheduler(args.module)
    except ChimesError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f'Failed to discover scheduler: {e}')
        sys.exit(1)

    async def run_scheduler() -> None:
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.info('Received interrupt signal, stopping scheduler...')
            scheduler.request_stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, signal_handler)
            except NotImplementedError:
                pass

        await scheduler.run_forever()

    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        logger.info('Scheduler interrupted by user')
    except Exception as e:
        logger.error(f'Scheduler failed: {e}', exc_info=True)
        sys.exit(1)


def next_command(args: argparse.Namespace) -> None:
    """Print the next occurrences of a cron expression."""
    try:
        runs = upcoming(
            args.expression, datetime.now(timezone.utc), args.count, args.timezone
        )
    except ChimesError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    for run in runs:
        print(run.isoformat())


def add_cron_command(args: argparse.Namespace) -> None:
    job = _run_admin(
        args,
        lambda s: s.create_recurring_job(args.name, args.expression, _job_options(args)),
    )
    print(f"created '{job.name}' (id={job.id}), next run {job.next_run_at.isoformat()}")


def add_once_command(args: argparse.Namespace) -> None:
    job = _run_admin(
        args,
        lambda s: s.create_onetime_job(args.name, args.run_at, _job_options(args)),
    )
    print(f"created '{job.name}' (id={job.id}), runs at {job.next_run_at.isoformat()}")


def remove_command(args: argparse.Namespace) -> None:
    removed = _run_admin(args, lambda s: s.remove_job_by_name(args.name))
    if not removed:
        print(f"no job named '{args.name}'", file=sys.stderr)
        sys.exit(1)
    print(f"removed '{args.name}'")


def _add_common(parser: argparse.ArgumentParser, loglevel: str = 'INFO') -> None:
    parser.add_argument(
        'module',
        help='Module path (e.g., app.scheduling:scheduler)',
    )
    parser.add_argument(
        '--loglevel',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=loglevel,
        type=str.upper,
        help=f'Logging level (default: {loglevel})',
    )


def _add_job_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--channel', default=None, help='Emission channel')
    parser.add_argument('--start', type=_parse_datetime, default=None, help='ISO start date')
    parser.add_argument('--end', type=_parse_datetime, default=None, help='ISO end date')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='chimes',
        description='chimes job scheduler - run schedulers and manage jobs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  chimes scheduler app.scheduling:scheduler
  chimes add-cron app.scheduling:scheduler nightly '0 3 * * *' --channel reports
  chimes add-once app.scheduling:scheduler launch 2026-01-01T00:00:00+00:00
  chimes remove app.scheduling:scheduler nightly
  chimes next '*/5 * * * * *' --count 3
""",
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    scheduler_parser = subparsers.add_parser('scheduler', help='Run a scheduler process')
    _add_common(scheduler_parser)

    next_parser = subparsers.add_parser('next', help='Show upcoming cron occurrences')
    next_parser.add_argument('expression', help='Cron expression')
    next_parser.add_argument('--count', type=int, default=5, help='Occurrences (default: 5)')
    next_parser.add_argument('--timezone', default='UTC', help='Timezone (default: UTC)')

    add_cron_parser = subparsers.add_parser('add-cron', help='Create a recurring job')
    _add_common(add_cron_parser, loglevel='WARNING')
    add_cron_parser.add_argument('name', help='Unique job name')
    add_cron_parser.add_argument('expression', help='Cron expression')
    _add_job_options(add_cron_parser)

    add_once_parser = subparsers.add_parser('add-once', help='Create a one-time job')
    _add_common(add_once_parser, loglevel='WARNING')
    add_once_parser.add_argument('name', help='Unique job name')
    add_once_parser.add_argument('run_at', type=_parse_datetime, help='ISO run time')
    _add_job_options(add_once_parser)

    remove_parser = subparsers.add_parser('remove', help='Remove a job by name')
    _add_common(remove_parser, loglevel='WARNING')
    remove_parser.add_argument('name', help='Job name')

    return parser


def main() -> None:
    """Main CLI entry point."""
    parser = build_parser()
    try:
        args = parser.parse_args()

        match args.command:
            case 'scheduler':
                scheduler_command(args)
            case 'next':
                next_command(args)
            case 'add-cron':
                add_cron_command(args)
            case 'add-once':
                add_once_command(args)
            case 'remove':
                remove_command(args)
            case _:
                parser.print_help()
                sys.exit(1)
    except KeyboardInterrupt:
        print('\nInterrupted by user')
        sys.exit(0)


if __name__ == '__main__':
    main()
