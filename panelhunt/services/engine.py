# panelhunt/services/engine.py
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import numpy as np

from .crop import ANSWER_MARGINS, QUESTION_MARGINS, Margins, crop
from .extract import DetectedCode, is_code
from .render import ANSWER, QUESTION

logger = logging.getLogger("engine")


class Mode(str, Enum):
    SEEKING = "question"
    MATCHING = "answer"


class RenderSink(Protocol):
    def render(self, area: str, code: str, image: np.ndarray, color: str) -> None: ...
    def clear(self, area: str) -> None: ...


@dataclass(frozen=True)
class CacheEntry:
    code: str
    image: np.ndarray
    rect: Tuple[float, float, float, float]


class ModeEngine:
    """
    Owns the round state:
      active   - codes sought this round (replaced by every question scan that finds one)
      cache    - code -> crop captured in answer mode (survives soft resets)
      revealed - codes already shown as matches (subset of active & cache)

    sync_cache() is the only place a match becomes visible.
    """

    def __init__(
        self,
        sink: RenderSink,
        question_margins: Margins = QUESTION_MARGINS,
        answer_margins: Margins = ANSWER_MARGINS,
        question_color: str = "#ff9800",
        answer_color: str = "#4caf50",
        soft_reset_clears_cache: bool = False,
    ):
        self.sink = sink
        self.question_margins = question_margins
        self.answer_margins = answer_margins
        self.question_color = question_color
        self.answer_color = answer_color
        self.soft_reset_clears_cache = soft_reset_clears_cache

        self._active: Dict[str, DetectedCode] = {}
        self._cache: Dict[str, CacheEntry] = {}
        self._revealed: Dict[str, None] = {}
        self._disposed = False
        # ticks run on the event loop, reset/state may arrive from request threads
        self._lock = threading.RLock()

    # -------------------------
    # Read-only views
    # -------------------------
    @property
    def active_codes(self) -> List[str]:
        with self._lock:
            return list(self._active)

    @property
    def cached_codes(self) -> List[str]:
        with self._lock:
            return list(self._cache)

    @property
    def revealed_codes(self) -> List[str]:
        with self._lock:
            return list(self._revealed)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def cached(self, code: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._cache.get(code)

    # -------------------------
    # Tick handlers
    # -------------------------
    def on_seeking_tick(self, detected: Iterable[DetectedCode], frame: Optional[np.ndarray] = None) -> None:
        """
        Replace the sought codes with this scan's codes and redraw the question area.

        A scan with no usable code only clears the question area. The active set
        and the reveals stay as they were, so one blank frame while the camera
        moves does not withdraw and then re-render every match.
        """
        with self._lock:
            if self._disposed:
                logger.debug("Question tick ignored: engine disposed")
                return

            items = _valid_unique(detected)
            self.sink.clear(QUESTION)
            if not items:
                return

            self._active = {d.code: d for d in items}
            for d in items:
                if frame is None:
                    logger.debug("No frame for %s; not rendered", d.code)
                    continue
                self.sink.render(QUESTION, d.code, crop(frame, d.rect, self.question_margins), self.question_color)

            self._prune_revealed()
            self.sync_cache()

    def on_matching_tick(self, detected: Iterable[DetectedCode], frame: Optional[np.ndarray] = None) -> None:
        with self._lock:
            if self._disposed:
                logger.debug("Answer tick ignored: engine disposed")
                return

            if frame is not None:
                for d in _valid_unique(detected):
                    self._cache[d.code] = CacheEntry(
                        code=d.code,
                        image=crop(frame, d.rect, self.answer_margins),
                        rect=d.rect,
                    )
                    logger.debug("Cached %s at %s", d.code, d.rect)

            self.sync_cache()

    def sync_cache(self) -> List[str]:
        """Reveal every active, cached, not-yet-revealed code. Returns the codes revealed now."""
        with self._lock:
            if self._disposed:
                return []

            shown: List[str] = []
            for code in self._active:
                if code in self._revealed:
                    continue
                entry = self._cache.get(code)
                if entry is None:
                    continue
                self._revealed[code] = None
                self.sink.render(ANSWER, code, entry.image, self.answer_color)
                shown.append(code)

        if shown:
            logger.info("Revealed %s", ", ".join(shown))
        return shown

    # -------------------------
    # Lifecycle
    # -------------------------
    def reset(self, hard: bool = False) -> None:
        with self._lock:
            self.sink.clear(QUESTION)
            self.sink.clear(ANSWER)
            self._active.clear()
            self._revealed.clear()
            if hard or self.soft_reset_clears_cache:
                self._cache.clear()
            kept = len(self._cache)
        logger.info("Reset (%s); %d cached code(s) kept", "hard" if hard else "soft", kept)

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self.reset(hard=True)
            self._disposed = True
        logger.info("Engine disposed")

    # -------------------------
    # Internals
    # -------------------------
    def _prune_revealed(self) -> None:
        """
        Drop reveals for codes a new question scan no longer lists and redraw the
        answer area without them. A code that comes back is revealed again.
        Caller holds the lock.
        """
        stale = [c for c in self._revealed if c not in self._active or c not in self._cache]
        if not stale:
            return
        for c in stale:
            del self._revealed[c]
        self.sink.clear(ANSWER)
        for c in self._revealed:
            self.sink.render(ANSWER, c, self._cache[c].image, self.answer_color)
        logger.debug("Withdrew reveals: %s", ", ".join(stale))


def _valid_unique(detected: Optional[Iterable[DetectedCode]]) -> List[DetectedCode]:
    """First occurrence of each well-formed code; anything malformed is skipped."""
    out: List[DetectedCode] = []
    seen = set()
    for d in detected or ():
        code = getattr(d, "code", None)
        if not isinstance(code, str) or not is_code(code) or code in seen:
            continue
        try:
            rect = tuple(float(v) for v in (d.x, d.y, d.w, d.h))
        except (AttributeError, TypeError, ValueError):
            continue
        if not all(math.isfinite(v) for v in rect) or rect[2] <= 0 or rect[3] <= 0:
            continue
        seen.add(code)
        out.append(d)
    return out
