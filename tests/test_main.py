"""Tests for main.py — command-line generation pass."""

import json
from datetime import date
from unittest.mock import AsyncMock, patch

import main
from recurgen.core.generation_job import GenerationFailedError, GenerationResult


def test_explicit_range(capsys):
    run = AsyncMock(return_value=GenerationResult(created=3))
    with patch("main.SQLiteTaskStore"), patch.object(main.GenerationJob, "run", run):
        code = main.main(["--owner", "7", "--start", "2024-01-01", "--end", "2024-01-03"])
    assert code == 0
    run.assert_awaited_once_with(date(2024, 1, 1), date(2024, 1, 3), owner_id=7)
    assert json.loads(capsys.readouterr().out)["created"] == 3


def test_default_window_uses_daily_trigger(capsys):
    daily = AsyncMock(return_value=GenerationResult())
    with patch("main.SQLiteTaskStore"), patch("main.run_daily", daily):
        assert main.main([]) == 0
    daily.assert_awaited_once()


def test_storage_failure_exit_code(capsys):
    failure = GenerationFailedError("db down", GenerationResult(created=2))
    with patch("main.SQLiteTaskStore"), \
         patch("main.run_daily", AsyncMock(side_effect=failure)):
        assert main.main([]) == 1
    assert json.loads(capsys.readouterr().out)["created"] == 2
