# panelhunt/services/scanner.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set, Union

from .engine import Mode, ModeEngine
from .session import DetectionSession

logger = logging.getLogger("scanner")


class Scanner:
    """
    Press-and-hold tick loop.

    press() fires a tick immediately and then every `interval_s` until release().
    At most one tick is in flight: a tick requested while another is pending
    is dropped. release() stops the repeat but never aborts an in-flight tick;
    its result is applied once it arrives.
    """

    def __init__(
        self,
        session: DetectionSession,
        engine: ModeEngine,
        interval_s: float = 1.0,
        mode: Union[Mode, str] = Mode.SEEKING,
    ):
        self.session = session
        self.engine = engine
        self.interval_s = max(0.05, float(interval_s))
        self._mode = Mode(mode)
        self._busy = False
        self._loop_task: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()

    @property
    def mode(self) -> Mode:
        return self._mode

    def set_mode(self, mode: Union[Mode, str]) -> Mode:
        new = Mode(mode)
        if new is not self._mode:
            logger.info("Mode %s -> %s", self._mode.value, new.value)
            self._mode = new
        return self._mode

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def holding(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def tick(self) -> bool:
        """Run one scan and hand it to the handler for the mode active at start. False if dropped."""
        if self._busy:
            logger.debug("Tick dropped: previous scan still in flight")
            return False

        self._busy = True
        mode = self._mode
        try:
            result = await self.session.scan()
            if mode is Mode.SEEKING:
                self.engine.on_seeking_tick(result.codes, result.frame)
            else:
                self.engine.on_matching_tick(result.codes, result.frame)
            return True
        finally:
            self._busy = False

    def press(self) -> bool:
        """Start repeating. No-op while already held."""
        if self.holding:
            return False
        self._loop_task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Scan held (mode=%s, every %.2fs)", self._mode.value, self.interval_s)
        return True

    async def release(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scan released")

    async def drain(self) -> None:
        """Wait for any in-flight tick to finish applying."""
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def close(self) -> None:
        await self.release()
        await self.drain()

    async def _run(self) -> None:
        while True:
            # spawned separately so cancelling the repeat leaves the scan running
            t = asyncio.get_running_loop().create_task(self._safe_tick())
            self._ticks.add(t)
            t.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval_s)

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.error("Scan tick failed", exc_info=True)
