# panelhunt/services/crop.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class Margins:
    """Pixels added around a code's rect, per side."""
    top: int = 0
    bottom: int = 0
    left: int = 0
    right: int = 0


# Roughly symmetric for the question list; the answer label sits under the code
QUESTION_MARGINS = Margins(top=30, bottom=30, left=30, right=30)
ANSWER_MARGINS = Margins(top=20, bottom=160, left=40, right=40)


def crop_box(
    image_shape: Tuple[int, ...],
    rect: Tuple[float, float, float, float],
    margins: Margins,
) -> Tuple[int, int, int, int]:
    """
    Clamped crop window (x1, y1, x2, y2) for [x-left, y-top, w+left+right, h+top+bottom].
    Always at least 1x1 and always inside the image.
    """
    img_h, img_w = int(image_shape[0]), int(image_shape[1])
    x, y, w, h = rect

    x1 = math.floor(x - margins.left)
    y1 = math.floor(y - margins.top)
    x2 = math.ceil(x + w + margins.right)
    y2 = math.ceil(y + h + margins.bottom)

    x1 = min(max(0, x1), max(0, img_w - 1))
    y1 = min(max(0, y1), max(0, img_h - 1))
    x2 = min(max(x1 + 1, x2), img_w)
    y2 = min(max(y1 + 1, y2), img_h)
    return x1, y1, x2, y2


def crop(image: np.ndarray, rect: Tuple[float, float, float, float], margins: Margins) -> np.ndarray:
    """Cut a margin-padded copy of `rect` out of `image`. Never raises on out-of-range rects."""
    if image is None or image.size == 0:
        return np.zeros((1, 1, 3), dtype=np.uint8)
    x1, y1, x2, y2 = crop_box(image.shape, rect, margins)
    return image[y1:y2, x1:x2].copy()
