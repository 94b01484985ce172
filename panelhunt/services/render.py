# panelhunt/services/render.py
from __future__ import annotations

import base64
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List

import cv2
import numpy as np

logger = logging.getLogger("render")

QUESTION = "question"
ANSWER = "answer"
AREAS = (QUESTION, ANSWER)


def image_to_data_uri(image: np.ndarray, quality: int = 85) -> str:
    """Encode a BGR image as a JPEG data URI."""
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise RuntimeError("cv2.imencode failed")
    return "data:image/jpeg;base64," + base64.b64encode(buf.tobytes()).decode("ascii")


class RenderBoard:
    """
    In-process display list for the two areas. The HTTP layer reads it;
    the engine only appends and clears.
    """

    def __init__(self, jpeg_quality: int = 85):
        self.jpeg_quality = int(jpeg_quality)
        self._areas: Dict[str, List[Dict[str, Any]]] = {a: [] for a in AREAS}
        self._lock = threading.RLock()

    def render(self, area: str, code: str, image: np.ndarray, color: str) -> None:
        entries = self._area(area)
        # encode from a private copy
        uri = image_to_data_uri(np.array(image, copy=True), self.jpeg_quality)
        with self._lock:
            entries.append({
                "code": code,
                "color": color,
                "image": uri,
                "rendered_at": datetime.utcnow().isoformat(),
            })
        logger.debug("Rendered %s in %s", code, area)

    def clear(self, area: str) -> None:
        entries = self._area(area)
        with self._lock:
            entries.clear()

    def entries(self, area: str) -> List[Dict[str, Any]]:
        entries = self._area(area)
        with self._lock:
            return [dict(e) for e in entries]

    def codes(self, area: str) -> List[str]:
        return [e["code"] for e in self.entries(area)]

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return {a: self.entries(a) for a in AREAS}

    def _area(self, area: str) -> List[Dict[str, Any]]:
        try:
            return self._areas[area]
        except KeyError:
            raise ValueError(f"unknown render area '{area}'")
