# panelhunt/services/session.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np

from .extract import DetectedCode, Token, extract_codes

logger = logging.getLogger("session")

FrameSource = Callable[[], Optional[np.ndarray]]
Recognizer = Callable[[np.ndarray], Sequence[Token]]


@dataclass
class ScanResult:
    frame: Optional[np.ndarray] = None
    codes: List[DetectedCode] = field(default_factory=list)


def dedupe(codes: Sequence[DetectedCode]) -> List[DetectedCode]:
    """Keep the first instance of each code value; position is ignored."""
    seen = set()
    out: List[DetectedCode] = []
    for d in codes:
        if d.code in seen:
            continue
        seen.add(d.code)
        out.append(d)
    return out


class DetectionSession:
    """
    One capture -> recognize -> extract -> dedupe pass per call.
    Blocking collaborators run in worker threads so the event loop stays free.
    Any collaborator failure becomes an empty result.
    """

    def __init__(self, frame_source: FrameSource, recognizer: Recognizer):
        self.frame_source = frame_source
        self.recognizer = recognizer

    async def scan(self) -> ScanResult:
        try:
            frame = await asyncio.to_thread(self.frame_source)
        except Exception as e:
            logger.warning("Frame capture failed: %s", e)
            return ScanResult()
        if frame is None:
            logger.warning("No frame available")
            return ScanResult()
        return ScanResult(frame=frame, codes=await self.detect(frame))

    async def detect(self, frame: np.ndarray) -> List[DetectedCode]:
        try:
            tokens = await asyncio.to_thread(self.recognizer, frame)
        except Exception as e:
            logger.warning("Recognition unavailable: %s", e)
            return []

        try:
            codes = dedupe(extract_codes(tokens or []))
        except Exception as e:
            logger.warning("Malformed recognizer output: %s", e)
            return []

        logger.debug("Detected %s", [d.code for d in codes])
        return codes
