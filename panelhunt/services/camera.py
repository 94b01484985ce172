# panelhunt/services/camera.py
from __future__ import annotations

import logging
import threading
import time
from typing import Iterator, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger("camera")

BACKENDS = ("picamera2", "opencv")


class Camera:
    """
    Frame Source for the scan loop and the live preview.

    `backend` picks the device driver: "picamera2", "opencv", or None to try
    Picamera2 first and fall back to OpenCV. read() returns the newest BGR
    frame, or None when the device gave nothing this time.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._backend: Optional[str] = None
        self._dev = None
        self.preview_fps = 10
        self.jpeg_quality = 80

    @property
    def backend(self) -> Optional[str]:
        return self._backend

    def open(
        self,
        device: Optional[str] = None,
        backend: Optional[str] = None,
        resolution: Optional[Sequence[int]] = None,
        preview_fps: int = 10,
        jpeg_quality: int = 80,
    ) -> str:
        with self._lock:
            if self._backend is not None:
                return self._backend

            choice = (backend or "auto").strip().lower()
            if choice != "auto" and choice not in BACKENDS:
                raise ValueError(f"unknown camera backend '{backend}'")

            size = (int(resolution[0]), int(resolution[1])) if resolution else (1280, 720)
            self.preview_fps = max(1, int(preview_fps))
            self.jpeg_quality = int(jpeg_quality)

            if choice in ("auto", "picamera2"):
                try:
                    self._dev = _start_picamera2(size)
                    self._backend = "picamera2"
                except Exception as e:
                    if choice == "picamera2":
                        raise RuntimeError(f"Picamera2 unavailable: {e}") from e
                    logger.info("Picamera2 unavailable (%s); using OpenCV", e)

            if self._backend is None:
                self._dev = _open_capture(device, size)
                self._backend = "opencv"

            logger.info("Camera ready: %s at %sx%s", self._backend, *size)
            return self._backend

    def ready(self) -> bool:
        dev = self._dev
        if dev is None:
            return False
        return dev.isOpened() if self._backend == "opencv" else True

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._backend is None:
                raise RuntimeError("Camera not initialized")
            if self._backend == "picamera2":
                # RGB888 is laid out B,G,R in memory, which is what OpenCV expects
                return self._dev.capture_array()
            # drop the buffered frame so the scan sees the scene as it is now
            self._dev.grab()
            ok, frame = self._dev.read()
            return frame if ok else None

    def jpeg(self) -> Optional[bytes]:
        frame = self.read()
        if frame is None:
            return None
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        return buf.tobytes() if ok else None

    def preview(self) -> Iterator[bytes]:
        """multipart/x-mixed-replace parts (boundary "frame") until the camera closes."""
        period = 1.0 / self.preview_fps
        while self._backend is not None:
            try:
                jpg = self.jpeg()
            except RuntimeError:
                return
            if jpg:
                yield b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + jpg + b"\r\n"
            time.sleep(period)

    def close(self) -> None:
        with self._lock:
            dev, backend = self._dev, self._backend
            self._dev, self._backend = None, None
            if dev is None:
                return
            try:
                if backend == "picamera2":
                    dev.stop()
                    dev.close()
                else:
                    dev.release()
            except Exception:
                logger.warning("Error closing %s camera", backend, exc_info=True)
        logger.info("Camera closed")


def _start_picamera2(size: Tuple[int, int]):
    from picamera2 import Picamera2  # type: ignore  # optional 'pi' extra

    cam = Picamera2()
    cam.configure(cam.create_video_configuration(main={"size": size, "format": "RGB888"}, buffer_count=2))
    cam.start()
    return cam


def _open_capture(device: Optional[Union[int, str]], size: Tuple[int, int]) -> cv2.VideoCapture:
    if device is None:
        src: Union[int, str] = 0
    elif str(device).isdigit():
        src = int(device)
    else:
        src = str(device)   # e.g. /dev/video2

    cap = cv2.VideoCapture(src)
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open camera device: {src}")
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, size[0])
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, size[1])
    cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
    return cap
