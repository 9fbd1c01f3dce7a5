"""
Command line entry points.

tour-intake worker         poll loop + heartbeat until SIGINT/SIGTERM
tour-intake process-once   one claim + process pass
tour-intake calendar-sync  one calendar scheduler pass
"""
from __future__ import annotations
import argparse
import asyncio
import signal
import sys

import orjson
import structlog

from tour_intake.settings import Settings, settings

logger = structlog.get_logger()


def _settings_from(args: argparse.Namespace) -> Settings:
    update = {}
    if getattr(args, "worker_id", None):
        update["worker_id"] = args.worker_id
    if getattr(args, "batch_size", None):
        update["import_worker_batch_size"] = args.batch_size
    return settings.model_copy(update=update) if update else settings


async def _run_worker(args: argparse.Namespace) -> int:
    from tour_intake.common.database import build_session_factory
    from tour_intake.main import build_components
    from tour_intake.worker.heartbeat import heartbeat_loop

    cfg = _settings_from(args)
    engine, factory = build_session_factory(cfg)
    components = build_components(cfg, factory)
    structlog.contextvars.bind_contextvars(worker_id=cfg.worker_id)

    stop = asyncio.Event()

    def _request_stop() -> None:
        stop.set()
        components.worker_loop.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:  # Windows
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(_request_stop))

    hb_task = asyncio.create_task(heartbeat_loop(
        components.heartbeat, cfg.worker_id, cfg.worker_type,
        interval=cfg.heartbeat_interval_sec, stop=stop))
    try:
        await components.worker_loop.run_forever()
    finally:
        stop.set()
        await asyncio.gather(hb_task, return_exceptions=True)
        await components.aclose()
        await engine.dispose()
    return 0


async def _run_process_once(args: argparse.Namespace) -> int:
    from tour_intake.common.database import build_session_factory
    from tour_intake.main import build_components

    cfg = _settings_from(args)
    engine, factory = build_session_factory(cfg)
    components = build_components(cfg, factory)
    try:
        processed = await components.worker_loop.run_once()
    finally:
        await components.aclose()
        await engine.dispose()
    _emit({"processed": processed})
    return 0 if components.worker_loop.consecutive_failures == 0 else 1


async def _run_calendar_sync(args: argparse.Namespace) -> int:
    from tour_intake.common.database import build_session_factory
    from tour_intake.main import build_components

    engine, factory = build_session_factory(settings)
    components = build_components(settings, factory)
    try:
        summary = await components.scheduler.run_once()
    finally:
        await components.aclose()
        await engine.dispose()
    _emit(summary)
    return 0


def _emit(payload: dict) -> None:
    sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode() + "\n")


_COMMANDS = {
    "worker": _run_worker,
    "process-once": _run_process_once,
    "calendar-sync": _run_calendar_sync,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tour-intake", description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="run the import worker poll loop")
    worker.add_argument("--worker-id", default=None)
    worker.add_argument("--batch-size", type=int, default=None)

    once = sub.add_parser("process-once", help="claim and process one batch")
    once.add_argument("--worker-id", default=None)
    once.add_argument("--batch-size", type=int, default=None)

    sub.add_parser("calendar-sync", help="run one calendar sync pass")
    return parser


def main(argv: list[str] | None = None) -> int:
    from tour_intake.main import configure_logging

    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(_COMMANDS[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
