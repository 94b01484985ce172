import numpy as np
import pytest

from panelhunt.services import camera


class FakeCapture:
    opened = []

    def __init__(self, src):
        self.src = src
        self.props = {}
        self.grabs = 0
        self.released = False
        self.frames = [np.full((48, 64, 3), 200, dtype=np.uint8)]
        FakeCapture.opened.append(self)

    def isOpened(self):
        return not self.released and self.src != "/dev/missing"

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def grab(self):
        self.grabs += 1
        return True

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames[0]

    def release(self):
        self.released = True


@pytest.fixture(autouse=True)
def fake_devices(monkeypatch):
    FakeCapture.opened = []
    monkeypatch.setattr(camera.cv2, "VideoCapture", FakeCapture)

    def no_picamera(size):
        raise ImportError("No module named 'picamera2'")

    monkeypatch.setattr(camera, "_start_picamera2", no_picamera)


def test_read_before_open_raises():
    cam = camera.Camera()
    assert cam.ready() is False
    with pytest.raises(RuntimeError):
        cam.read()


def test_auto_falls_back_to_opencv():
    cam = camera.Camera()
    assert cam.open(resolution=[320, 240]) == "opencv"
    cap = FakeCapture.opened[0]
    assert cap.src == 0
    assert cap.props[camera.cv2.CAP_PROP_FRAME_WIDTH] == 320
    assert cam.ready()


@pytest.mark.parametrize("device, src", [("2", 2), ("/dev/video1", "/dev/video1")])
def test_device_index_or_path(device, src):
    camera.Camera().open(device=device, backend="opencv")
    assert FakeCapture.opened[0].src == src


def test_read_drops_buffered_frame():
    cam = camera.Camera()
    cam.open(backend="opencv")
    frame = cam.read()
    assert frame.shape == (48, 64, 3)
    assert FakeCapture.opened[0].grabs == 1

    FakeCapture.opened[0].frames = []
    assert cam.read() is None


def test_forced_picamera2_does_not_fall_back():
    cam = camera.Camera()
    with pytest.raises(RuntimeError):
        cam.open(backend="picamera2")
    assert cam.backend is None and FakeCapture.opened == []


def test_bad_backend_and_missing_device():
    with pytest.raises(ValueError):
        camera.Camera().open(backend="webcam")
    with pytest.raises(RuntimeError):
        camera.Camera().open(device="/dev/missing", backend="opencv")


def test_preview_parts_are_jpeg_until_closed():
    cam = camera.Camera()
    cam.open(backend="opencv", preview_fps=50)
    parts = cam.preview()

    part = next(parts)
    assert part.startswith(b"--frame\r\nContent-Type: image/jpeg\r\n\r\n\xff\xd8")

    cam.close()
    assert FakeCapture.opened[0].released
    assert list(parts) == []
    assert cam.ready() is False
