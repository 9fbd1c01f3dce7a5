"""CLI argument wiring."""
import pytest

from tour_intake.cli import _settings_from, build_parser


def test_worker_overrides():
    args = build_parser().parse_args(["worker", "--worker-id", "w-9", "--batch-size", "7"])
    cfg = _settings_from(args)
    assert args.command == "worker"
    assert cfg.worker_id == "w-9"
    assert cfg.import_worker_batch_size == 7


def test_calendar_sync_keeps_settings():
    args = build_parser().parse_args(["--log-level", "DEBUG", "calendar-sync"])
    assert args.log_level == "DEBUG"
    assert _settings_from(args).worker_id  # defaults untouched


def test_command_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
