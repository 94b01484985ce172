# panelhunt/services/extract.py
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

logger = logging.getLogger("extract")

CODE_LEN = 3
MIN_SIDE_PX = 8.0

_NON_DIGIT_RE = re.compile(r"[^0-9]")
_CODE_RE = re.compile(r"[0-9]{3}")


@dataclass(frozen=True)
class Token:
    """One recognized text region: raw text plus its 4-vertex bounding polygon."""
    text: str
    quad: Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class DetectedCode:
    code: str
    x: float
    y: float
    w: float
    h: float

    @property
    def rect(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.w, self.h


# =========================
# Public API
# =========================

def normalize(text: str) -> str:
    """
    Fold full-width digits to ASCII (NFKC) and drop every non-digit.
    "１２３" -> "123", "No.4-5 6" -> "456".
    """
    folded = unicodedata.normalize("NFKC", text or "")
    return _NON_DIGIT_RE.sub("", folded)


def is_code(text: str) -> bool:
    return bool(_CODE_RE.fullmatch(text or ""))


def quad_to_rect(quad: Sequence[Any]) -> Optional[Tuple[float, float, float, float]]:
    """
    Rect from a polygon ordered top-left, top-right, bottom-right, bottom-left.
    x,y from the top-left vertex; w from the top edge; h from the left edge.
    Returns None when the polygon is unusable.
    """
    if quad is None or len(quad) < 4:
        return None
    try:
        pts = [(float(p[0]), float(p[1])) for p in quad[:4]]
    except (TypeError, ValueError, IndexError):
        return None

    (x0, y0), (x1, _y1), _br, (_x3, y3) = pts
    w = max(MIN_SIDE_PX, x1 - x0)
    h = max(MIN_SIDE_PX, y3 - y0)
    return x0, y0, w, h


def extract_codes(tokens: Sequence[Token]) -> List[DetectedCode]:
    """
    Keep only tokens whose normalized text is exactly three digits.
    Order follows the recognizer's token order. No dedupe here.
    """
    out: List[DetectedCode] = []
    for tok in tokens or ():
        digits = normalize(getattr(tok, "text", ""))
        if len(digits) != CODE_LEN or not is_code(digits):
            continue

        rect = quad_to_rect(getattr(tok, "quad", None))
        if rect is None:
            logger.debug("Dropping %r: no usable bounding polygon", digits)
            continue

        x, y, w, h = rect
        out.append(DetectedCode(code=digits, x=x, y=y, w=w, h=h))
    return out
