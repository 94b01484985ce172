# panelhunt/services/recognizer.py
from __future__ import annotations

import base64
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
import pytesseract
import requests
from pytesseract import Output

from .extract import Token

logger = logging.getLogger("recognizer")

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
API_KEY_ENV = "VISION_API_KEY"

# =========================
# State / configuration
# =========================

@dataclass
class RecognizerState:
    engine: str = "vision"            # "vision" | "tesseract"
    api_key: Optional[str] = None
    endpoint: str = VISION_ENDPOINT
    feature: str = "TEXT_DETECTION"
    timeout_s: float = 8.0
    jpeg_quality: int = 85

    # tesseract engine
    lang: str = "eng"
    psm: int = 11                     # sparse text: panels are scattered around the frame

    initialized: bool = False


_state = RecognizerState()
_session: Optional[requests.Session] = None


# =========================
# Public API
# =========================

def init(cfg: Dict[str, Any]) -> None:
    """
    Initialize the recognizer.
    Optional config keys honored:
      engine, api_key, endpoint, feature, timeout_s, jpeg_quality, lang, psm
    The API key falls back to the VISION_API_KEY environment variable.
    A missing key does not fail init; recognize() raises until one is present.
    """
    global _state, _session
    _state.engine = str(cfg.get("engine", _state.engine)).strip().lower()
    key = cfg.get("api_key") or os.getenv(API_KEY_ENV)
    _state.api_key = str(key).strip() if key else None
    _state.endpoint = str(cfg.get("endpoint") or _state.endpoint)
    _state.feature = str(cfg.get("feature") or _state.feature)
    _state.timeout_s = float(cfg.get("timeout_s", _state.timeout_s))
    _state.jpeg_quality = int(cfg.get("jpeg_quality", _state.jpeg_quality))
    _state.lang = str(cfg.get("lang", _state.lang))
    _state.psm = int(cfg.get("psm", _state.psm))

    if _state.engine not in ("vision", "tesseract"):
        logger.warning("Unknown recognizer engine '%s', falling back to 'vision'", _state.engine)
        _state.engine = "vision"

    if _state.engine == "tesseract":
        try:
            out = subprocess.run(
                ["tesseract", "--version"], capture_output=True, text=True, check=False
            )
            if out.returncode != 0:
                raise RuntimeError(out.stderr.strip() or "tesseract not available")
        except FileNotFoundError:
            raise RuntimeError("tesseract binary not found; install tesseract-ocr")
    else:
        _session = requests.Session()
        if not _state.api_key:
            logger.warning("No Vision API key configured (set %s); scans will find nothing", API_KEY_ENV)

    _state.initialized = True
    logger.info(
        "Recognizer initialized: engine=%s, credential=%s",
        _state.engine, "present" if _state.api_key else "absent",
    )


def status() -> bool:
    if not _state.initialized:
        return False
    if _state.engine == "vision":
        return bool(_state.api_key)
    return True


def recognize(image: np.ndarray) -> List[Token]:
    """
    Return every recognized word in `image` with its bounding quad.
    Raises RuntimeError on any failure; callers decide whether that is fatal.
    """
    if not _state.initialized:
        raise RuntimeError("Recognizer not initialized")
    if image is None or image.size == 0:
        raise RuntimeError("Empty image")

    if _state.engine == "tesseract":
        return _recognize_tesseract(image)
    return _recognize_vision(image)


def shutdown() -> None:
    global _session
    if _session is not None:
        _session.close()
        _session = None
    _state.initialized = False


# =========================
# Engines
# =========================

def _recognize_vision(image: np.ndarray) -> List[Token]:
    if not _state.api_key:
        raise RuntimeError("Vision API key missing")

    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), _state.jpeg_quality])
    if not ok:
        raise RuntimeError("JPEG encoding failed")

    body = {
        "requests": [
            {
                "image": {"content": base64.b64encode(buf.tobytes()).decode("ascii")},
                "features": [{"type": _state.feature}],
            }
        ]
    }
    http = _session or requests
    try:
        resp = http.post(
            _state.endpoint,
            params={"key": _state.api_key},
            json=body,
            timeout=_state.timeout_s,
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise RuntimeError(f"Vision request failed: {e}") from e

    return parse_vision_response(payload)


def parse_vision_response(payload: Dict[str, Any]) -> List[Token]:
    """
    Convert an images:annotate response into word tokens.
    textAnnotations[0] is the whole-frame text block and is skipped.
    """
    if not isinstance(payload, dict):
        raise RuntimeError("Malformed Vision response")
    responses = payload.get("responses")
    if not isinstance(responses, list) or not responses:
        raise RuntimeError("Malformed Vision response: no responses")

    first = responses[0] or {}
    if first.get("error"):
        err = first["error"]
        raise RuntimeError(f"Vision error: {err.get('message', err)}")

    tokens: List[Token] = []
    for i, ann in enumerate((first.get("textAnnotations") or [])[1:], start=1):
        try:
            text = ann.get("description") or ""
            vertices = (ann.get("boundingPoly") or {}).get("vertices") or []
            # zero coordinates are omitted from the JSON
            quad = tuple((float(v.get("x", 0)), float(v.get("y", 0))) for v in vertices)
        except (AttributeError, TypeError, ValueError):
            logger.debug("Skipping malformed text annotation #%d: %r", i, ann)
            continue
        tokens.append(Token(text=str(text), quad=quad))
    return tokens


def _recognize_tesseract(image: np.ndarray) -> List[Token]:
    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
    config = f"--oem 1 --psm {int(_state.psm)}"
    try:
        df = pytesseract.image_to_data(gray, lang=_state.lang, config=config, output_type=Output.DICT)
    except Exception as e:
        logger.error("Tesseract failed: %s", e, exc_info=True)
        raise RuntimeError("OCR text extraction failed") from e

    tokens: List[Token] = []
    for i in range(len(df.get("text", []))):
        t = (df["text"][i] or "").strip()
        if not t:
            continue
        x, y = float(df["left"][i]), float(df["top"][i])
        w, h = float(df["width"][i]), float(df["height"][i])
        tokens.append(Token(text=t, quad=((x, y), (x + w, y), (x + w, y + h), (x, y + h))))
    return tokens
