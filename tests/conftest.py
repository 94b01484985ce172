import numpy as np
import pytest

from panelhunt.services.extract import DetectedCode, Token


class FakeSink:
    """Records render/clear calls and mirrors what each area would show."""

    def __init__(self):
        self.calls = []
        self.areas = {"question": [], "answer": []}

    def render(self, area, code, image, color):
        self.calls.append(("render", area, code, color, image.shape))
        self.areas[area].append(code)

    def clear(self, area):
        self.calls.append(("clear", area))
        self.areas[area] = []

    def renders(self, area):
        return [c[2] for c in self.calls if c[0] == "render" and c[1] == area]


def code(value, x=10, y=10, w=50, h=20):
    return DetectedCode(code=value, x=x, y=y, w=w, h=h)


def token(text, x=10, y=10, w=50, h=20):
    return Token(text=text, quad=((x, y), (x + w, y), (x + w, y + h), (x, y + h)))


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def frame():
    img = np.zeros((480, 640, 3), dtype=np.uint8)
    img[:, :, 1] = np.arange(640, dtype=np.uint16)[None, :] % 256
    return img
