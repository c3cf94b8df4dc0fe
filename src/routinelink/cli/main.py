# src/routinelink/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the background work (event bus,
reset sweeper) and runs the console REPL until /exit or EOF.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state, shutdown, start_background
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(settings) -> None:
    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)
    try:
        await start_background(state)
        await run_console_loop(state)
    finally:
        await shutdown(state)
        logger.info("Bye.")


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/routinelink"),
        console_level=getattr(settings, "log_level", "INFO"),
    )
    logger.info("Starting %s (log file %s)...", getattr(settings, "app_name", "routinelink"), log_file)

    try:
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")


if __name__ == "__main__":
    main()
