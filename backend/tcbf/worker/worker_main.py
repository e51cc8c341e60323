"""Worker process entrypoint.

    # From backend/ directory:
    python -m tcbf.worker [--once | --manual | --status]

Without a flag the worker:
1. Loads tcbf.config.settings (honours .env file)
2. Blocks until the entries table exists
3. Registers the hourly expiry schedule
4. Handles SIGINT/SIGTERM by removing the schedule and exiting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal

logger = logging.getLogger("tcbf.worker")


async def _wait_for_db(max_retries: int = 10, delay: float = 2.0) -> None:
    """Wait until the ``entries`` table is accessible."""
    from sqlalchemy import text
    from tcbf.db.engine import async_session

    for attempt in range(1, max_retries + 1):
        try:
            async with async_session() as db:
                await db.execute(text("SELECT 1 FROM entries LIMIT 1"))
            logger.info("Database ready after %d attempt(s)", attempt)
            return
        except Exception as exc:
            logger.warning(
                "Database not ready (attempt %d/%d): %s", attempt, max_retries, exc
            )
            if attempt < max_retries:
                await asyncio.sleep(delay)

    raise RuntimeError(
        f"Database not accessible after {max_retries} attempts. "
        "Run `alembic upgrade head` before starting the worker."
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tcbf.worker", description="TC Booking Flow entry expiry worker")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run the expiry job once (locked) and exit")
    mode.add_argument("--manual", action="store_true", help="Run the expiry job once without the lock and exit")
    mode.add_argument("--status", action="store_true", help="Print lock and schedule status and exit")
    return parser.parse_args(argv)


async def _serve() -> None:
    from tcbf.runtime.scheduler import expiry_scheduler

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_stop(*_):
        logger.info("Received shutdown signal, stopping worker")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_stop)
        except (NotImplementedError, AttributeError):
            # Windows doesn't support add_signal_handler
            pass

    expiry_scheduler.start()
    logger.info("Next expiry run at %s", expiry_scheduler.next_run_time())
    try:
        await stop_event.wait()
    finally:
        expiry_scheduler.stop()


async def main(argv: list[str] | None = None) -> int:
    """Worker process entrypoint.  Returns the process exit code."""
    args = _parse_args(argv)

    from tcbf.config import settings
    from tcbf.utils.logger import setup_logger
    setup_logger(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

    from tcbf.db.engine import engine
    from tcbf.runtime.scheduler import expiry_job

    logger.info(
        "Starting TC Booking Flow worker (dialect=%s, form_id=%s)",
        settings.TCBF_DB_DIALECT,
        settings.TCBF_FORM_ID,
    )

    try:
        await _wait_for_db()

        if args.status:
            print(json.dumps({
                "is_locked": await expiry_job.is_locked(),
                "form_id": expiry_job.get_form_id(),
                "ttl_seconds": expiry_job.get_ttl_seconds(),
                "interval_seconds": settings.ENTRY_EXPIRY_INTERVAL_SECONDS,
            }))
            return 0

        if args.once or args.manual:
            result = await (expiry_job.run_manual() if args.manual else expiry_job.run())
            print(result.model_dump_json())
            return 1 if result.status == "error" else 0

        await _serve()
        logger.info("Worker stopped cleanly")
        return 0
    finally:
        await engine.dispose()
