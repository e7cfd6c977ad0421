"""
Expiry Loop — Periodic Toxic Status Sweep

THIS MODULE DEFINES BACKGROUND TASKS ONLY.

Every sweep interval the engine clears punishments whose time has run
out. A failing sweep is logged and the loop keeps going.
No commands are defined here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from state.toxic_engine import ToxicEngine
from utils.config import DEFAULT_SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

# ---------------------------
# Module state
# ---------------------------
_task: Optional[asyncio.Task] = None


def run_once(engine: ToxicEngine) -> int:
    try:
        cleared = engine.sweep()
    except Exception:
        logger.exception("toxic_expiry_sweep_error")
        return 0
    if cleared:
        logger.info("toxic_expiry_sweep", extra={"cleared": len(cleared)})
    return len(cleared)


async def _loop(engine: ToxicEngine, interval: float) -> None:
    try:
        while True:
            await asyncio.sleep(interval)
            run_once(engine)
    except asyncio.CancelledError:
        logger.info("toxic_expiry_loop_cancelled")
        raise


async def start(engine: ToxicEngine, interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
    global _task
    if _task and not _task.done():
        return
    _task = asyncio.create_task(_loop(engine, interval))


def is_running() -> bool:
    return _task is not None and not _task.done()


async def stop() -> None:
    global _task
    if not _task:
        return
    _task.cancel()
    try:
        await _task
    except asyncio.CancelledError:
        pass
    _task = None
