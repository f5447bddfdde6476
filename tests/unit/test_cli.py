"""Unit tests for the chimes CLI: locator parsing, discovery and commands."""

from __future__ import annotations

import argparse
import sys
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from chimes.core.cli import (
    _is_file_path,
    _parse_datetime,
    _parse_locator,
    build_parser,
    discover_scheduler,
    next_command,
)
from chimes.core.errors import ConfigurationError, ErrorCode
from chimes.core.scheduler import Scheduler

_APP_MODULE = textwrap.dedent(
    """
    from chimes import MemoryJobStore, Scheduler

    scheduler = Scheduler(MemoryJobStore())
    """
)


@pytest.mark.unit
class TestLocatorParsing:
    """Tests for _parse_locator() and _is_file_path()."""

    def test_module_with_attr(self) -> None:
        assert _parse_locator('app.scheduling:scheduler') == ('app.scheduling', 'scheduler')

    def test_module_without_attr(self) -> None:
        assert _parse_locator('app.scheduling') == ('app.scheduling', None)

    def test_file_path_with_attr(self) -> None:
        assert _parse_locator('/srv/app/jobs.py:sched') == ('/srv/app/jobs.py', 'sched')

    @pytest.mark.parametrize(
        ('value', 'expected'),
        [('jobs.py', True), ('app/jobs', True), ('app.jobs', False)],
    )
    def test_is_file_path(self, value: str, expected: bool) -> None:
        assert _is_file_path(value) is expected


@pytest.mark.unit
class TestParseDatetime:
    """Tests for _parse_datetime()."""

    def test_aware_value_kept(self) -> None:
        parsed = _parse_datetime('2026-01-01T00:00:00+02:00')

        assert parsed.utcoffset() is not None
        assert parsed == datetime(2025, 12, 31, 22, 0, tzinfo=timezone.utc)

    def test_naive_value_taken_as_utc(self) -> None:
        assert _parse_datetime('2026-01-01T09:30:00') == datetime(
            2026, 1, 1, 9, 30, tzinfo=timezone.utc
        )

    def test_garbage_rejected(self) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_datetime('next tuesday')


@pytest.mark.unit
class TestBuildParser:
    """Tests for the argparse layout."""

    def test_add_cron_arguments(self) -> None:
        args = build_parser().parse_args(
            ['add-cron', 'app:scheduler', 'nightly', '0 3 * * *', '--channel', 'reports']
        )

        assert args.command == 'add-cron'
        assert args.module == 'app:scheduler'
        assert args.name == 'nightly'
        assert args.expression == '0 3 * * *'
        assert args.channel == 'reports'
        assert args.start is None
        assert args.loglevel == 'WARNING'

    def test_add_once_parses_run_at(self) -> None:
        args = build_parser().parse_args(
            ['add-once', 'app:scheduler', 'launch', '2026-01-01T00:00:00+00:00']
        )

        assert args.run_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_scheduler_loglevel_case_insensitive(self) -> None:
        args = build_parser().parse_args(['scheduler', 'app:scheduler', '--loglevel', 'debug'])

        assert args.loglevel == 'DEBUG'

    def test_next_defaults(self) -> None:
        args = build_parser().parse_args(['next', '*/5 * * * * *'])

        assert args.count == 5
        assert args.timezone == 'UTC'


@pytest.mark.unit
class TestDiscoverScheduler:
    """Tests for discover_scheduler()."""

    def test_discovers_from_file_path(self, tmp_path: Path) -> None:
        app_file = tmp_path / 'sched_app.py'
        app_file.write_text(_APP_MODULE)

        scheduler, var_name = discover_scheduler(f'{app_file}:scheduler')

        assert isinstance(scheduler, Scheduler)
        assert var_name == 'scheduler'

    def test_discovers_single_instance_without_attr(self, tmp_path: Path) -> None:
        app_file = tmp_path / 'sched_single.py'
        app_file.write_text(_APP_MODULE)

        _, var_name = discover_scheduler(str(app_file))

        assert var_name == 'scheduler'

    def test_wrong_attribute_type(self, tmp_path: Path) -> None:
        app_file = tmp_path / 'sched_wrong.py'
        app_file.write_text(_APP_MODULE + '\nnot_a_scheduler = 42\n')

        with pytest.raises(ConfigurationError) as exc_info:
            discover_scheduler(f'{app_file}:not_a_scheduler')

        assert exc_info.value.code == ErrorCode.CLI_INVALID_ARGS
        assert exc_info.value.notes == ['got int']

    def test_multiple_instances_need_attr(self, tmp_path: Path) -> None:
        app_file = tmp_path / 'sched_multi.py'
        app_file.write_text(_APP_MODULE + '\nother = Scheduler(MemoryJobStore())\n')

        with pytest.raises(ConfigurationError) as exc_info:
            discover_scheduler(str(app_file))

        assert 'multiple' in exc_info.value.message

    def test_missing_module(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            discover_scheduler('definitely_not_a_module_xyz:scheduler')

        assert exc_info.value.code == ErrorCode.CLI_INVALID_ARGS


@pytest.mark.unit
class TestNextCommand:
    """Tests for the `chimes next` command."""

    def test_prints_occurrences(self, capsys: pytest.CaptureFixture[str]) -> None:
        args = argparse.Namespace(expression='0 15 * * *', count=3, timezone='UTC')

        next_command(args)

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 3
        assert all('T15:00:00+00:00' in line for line in lines)

    def test_invalid_expression_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        args = argparse.Namespace(expression='nope', count=1, timezone='UTC')

        with pytest.raises(SystemExit) as exc_info:
            next_command(args)

        assert exc_info.value.code == 1
        assert 'error[C102]' in capsys.readouterr().err

    def test_main_dispatches(self, capsys: pytest.CaptureFixture[str]) -> None:
        from chimes.core import cli

        with patch.object(sys, 'argv', ['chimes', 'next', '*/5 * * * * *', '--count', '2']):
            cli.main()

        assert len(capsys.readouterr().out.strip().splitlines()) == 2
