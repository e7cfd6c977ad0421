"""Tests for the periodic expiry sweep."""

import asyncio
import logging

from locks import expiry_loop
from state.toxic_engine import ToxicEngine

from conftest import PLAYER


class ExplodingEngine:
    def sweep(self):
        raise RuntimeError("boom")


def test_run_once_counts_cleared(engine: ToxicEngine, clock) -> None:
    engine.apply(PLAYER, 60)
    assert expiry_loop.run_once(engine) == 0

    clock.advance(60)
    assert expiry_loop.run_once(engine) == 1
    assert engine.get_record(PLAYER) is None


def test_run_once_survives_sweep_errors(caplog) -> None:
    with caplog.at_level(logging.ERROR, logger="locks.expiry_loop"):
        assert expiry_loop.run_once(ExplodingEngine()) == 0
    assert "toxic_expiry_sweep_error" in caplog.text


def test_loop_sweeps_until_stopped(engine: ToxicEngine, clock) -> None:
    engine.apply(PLAYER, 60)
    clock.advance(60)

    async def scenario() -> None:
        await expiry_loop.start(engine, interval=0.01)
        await expiry_loop.start(engine, interval=0.01)
        assert expiry_loop.is_running()
        for _ in range(100):
            if engine.get_record(PLAYER) is None:
                break
            await asyncio.sleep(0.01)
        await expiry_loop.stop()

    asyncio.run(scenario())
    assert engine.get_record(PLAYER) is None
    assert not expiry_loop.is_running()


def test_stop_without_start_is_safe() -> None:
    asyncio.run(expiry_loop.stop())
    assert not expiry_loop.is_running()
