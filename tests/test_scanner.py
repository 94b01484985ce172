import asyncio

import pytest

from conftest import code
from panelhunt.services.engine import Mode
from panelhunt.services.scanner import Scanner
from panelhunt.services.session import ScanResult


class RecordingEngine:
    def __init__(self):
        self.calls = []

    def on_seeking_tick(self, detected, frame=None):
        self.calls.append(("question", [d.code for d in detected]))

    def on_matching_tick(self, detected, frame=None):
        self.calls.append(("answer", [d.code for d in detected]))


class GatedSession:
    """scan() blocks until the gate opens; counts how many scans started."""

    def __init__(self, codes=("123",), gated=True):
        self.codes = [code(c) for c in codes]
        self.gate = asyncio.Event()
        if not gated:
            self.gate.set()
        self.started = 0

    async def scan(self):
        self.started += 1
        await self.gate.wait()
        return ScanResult(frame=None, codes=list(self.codes))


def test_tick_dispatches_on_mode():
    async def go():
        engine = RecordingEngine()
        scanner = Scanner(GatedSession(gated=False), engine)
        assert await scanner.tick()
        scanner.set_mode("answer")
        assert await scanner.tick()
        return engine.calls

    assert asyncio.run(go()) == [("question", ["123"]), ("answer", ["123"])]


def test_overlapping_tick_is_dropped():
    async def go():
        engine = RecordingEngine()
        session = GatedSession()
        scanner = Scanner(session, engine)

        first = asyncio.create_task(scanner.tick())
        await asyncio.sleep(0)
        assert scanner.busy
        assert await scanner.tick() is False

        session.gate.set()
        assert await first is True
        assert not scanner.busy
        return session.started, engine.calls

    started, calls = asyncio.run(go())
    assert started == 1
    assert calls == [("question", ["123"])]


def test_late_result_uses_mode_at_tick_start():
    async def go():
        engine = RecordingEngine()
        session = GatedSession()
        scanner = Scanner(session, engine, mode=Mode.SEEKING)

        pending = asyncio.create_task(scanner.tick())
        await asyncio.sleep(0)
        scanner.set_mode(Mode.MATCHING)
        session.gate.set()
        await pending
        return engine.calls

    assert asyncio.run(go()) == [("question", ["123"])]


def test_press_repeats_until_release():
    async def go():
        engine = RecordingEngine()
        scanner = Scanner(GatedSession(gated=False), engine, interval_s=0.05)

        assert scanner.press() is True
        assert scanner.press() is False
        await asyncio.sleep(0.18)
        await scanner.release()
        await scanner.drain()
        held = len(engine.calls)

        await asyncio.sleep(0.15)
        return held, len(engine.calls), scanner.holding

    held, after, holding = asyncio.run(go())
    assert held >= 2
    assert after == held
    assert holding is False


def test_release_lets_in_flight_scan_finish_once():
    async def go():
        engine = RecordingEngine()
        session = GatedSession()
        scanner = Scanner(session, engine, interval_s=0.05)

        scanner.press()
        await asyncio.sleep(0.17)     # several repeats requested while the first is pending
        await scanner.release()
        assert engine.calls == []

        session.gate.set()
        await scanner.drain()
        return session.started, engine.calls

    started, calls = asyncio.run(go())
    assert started == 1
    assert calls == [("question", ["123"])]


def test_release_without_press_is_harmless():
    async def go():
        scanner = Scanner(GatedSession(gated=False), RecordingEngine())
        await scanner.release()
        await scanner.close()
        return scanner.holding

    assert asyncio.run(go()) is False


def test_invalid_mode_rejected():
    scanner = Scanner(GatedSession(gated=False), RecordingEngine())
    with pytest.raises(ValueError):
        scanner.set_mode("sideways")
    assert scanner.mode is Mode.SEEKING
