# panelhunt/main.py
from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services import recognizer
from .services.camera import Camera
from .services.crop import ANSWER_MARGINS, QUESTION_MARGINS, Margins
from .services.engine import Mode, ModeEngine
from .services.render import AREAS, RenderBoard
from .services.scanner import Scanner
from .services.session import DetectionSession, FrameSource, Recognizer

# -----------------------------------------------------------------------------
# App metadata / logging
# -----------------------------------------------------------------------------
APP_NAME = "Panel Hunt"
APP_VERSION = "0.3.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger(APP_NAME)

# -----------------------------------------------------------------------------
# Config models
# -----------------------------------------------------------------------------
class CameraConfig(BaseModel):
    device: Optional[str] = None
    backend: Optional[str] = None
    resolution: Optional[List[int]] = None   # [w,h]
    preview_fps: int = 10
    jpeg_quality: int = 80

class RecognizerConfig(BaseModel):
    engine: str = "vision"
    api_key: Optional[str] = None            # falls back to $VISION_API_KEY
    endpoint: Optional[str] = None
    feature: str = "TEXT_DETECTION"
    timeout_s: float = 8.0
    jpeg_quality: int = 85
    lang: str = "eng"
    psm: int = 11

class ScanConfig(BaseModel):
    interval_s: float = 1.0
    mode: Mode = Mode.SEEKING

class MarginsConfig(BaseModel):
    top: int
    bottom: int
    left: int
    right: int

class CropConfig(BaseModel):
    question: MarginsConfig = Field(default_factory=lambda: MarginsConfig(**asdict(QUESTION_MARGINS)))
    answer: MarginsConfig = Field(default_factory=lambda: MarginsConfig(**asdict(ANSWER_MARGINS)))

class RenderConfig(BaseModel):
    question_color: str = "#ff9800"
    answer_color: str = "#4caf50"
    jpeg_quality: int = 85

class EngineConfig(BaseModel):
    soft_reset_clears_cache: bool = False

class AppConfig(BaseSettings):
    camera: CameraConfig = Field(default_factory=CameraConfig)
    recognizer: RecognizerConfig = Field(default_factory=RecognizerConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    crop: CropConfig = Field(default_factory=CropConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    model_config = SettingsConfigDict(extra="allow", case_sensitive=False, env_nested_delimiter="__")

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        # environment wins over config.yaml
        return env_settings, init_settings, file_secret_settings

# -----------------------------------------------------------------------------
# Load config.yaml
# -----------------------------------------------------------------------------
def load_config(cfg_path: Optional[Path] = None) -> AppConfig:
    # config.yaml one level up from this file (project root)
    cfg_path = cfg_path or Path(__file__).resolve().parent.parent / "config.yaml"
    if not cfg_path.exists():
        log.warning("config.yaml not found at %s; using defaults", cfg_path)
        return AppConfig()
    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    try:
        return AppConfig(**raw)
    except Exception as e:
        raise RuntimeError(f"Invalid config.yaml: {e}") from e

CONFIG: AppConfig = load_config()

# -----------------------------------------------------------------------------
# Runtime wiring
# -----------------------------------------------------------------------------
def build_runtime(
    cfg: AppConfig,
    frame_source: FrameSource,
    recognize: Recognizer,
) -> Tuple[RenderBoard, ModeEngine, Scanner]:
    board = RenderBoard(jpeg_quality=cfg.render.jpeg_quality)
    engine = ModeEngine(
        board,
        question_margins=Margins(**cfg.crop.question.model_dump()),
        answer_margins=Margins(**cfg.crop.answer.model_dump()),
        question_color=cfg.render.question_color,
        answer_color=cfg.render.answer_color,
        soft_reset_clears_cache=cfg.engine.soft_reset_clears_cache,
    )
    session = DetectionSession(frame_source, recognize)
    scanner = Scanner(session, engine, interval_s=cfg.scan.interval_s, mode=cfg.scan.mode)
    return board, engine, scanner

app = FastAPI(title=APP_NAME, version=APP_VERSION)

CAMERA = Camera()
BOARD, ENGINE, SCANNER = build_runtime(CONFIG, CAMERA.read, recognizer.recognize)

# -----------------------------------------------------------------------------
# Startup / Shutdown
# -----------------------------------------------------------------------------
@app.on_event("startup")
async def on_startup() -> None:
    log.info("Starting %s v%s", APP_NAME, APP_VERSION)

    try:
        backend = CAMERA.open(**CONFIG.camera.model_dump())
        log.info("Camera initialized (%s).", backend)
    except Exception as e:
        log.error("Camera init failed: %s", e, exc_info=True)

    try:
        recognizer.init(cfg=CONFIG.recognizer.model_dump())
    except Exception as e:
        log.error("Recognizer init failed: %s", e, exc_info=True)

    log.info("Startup complete (mode=%s).", SCANNER.mode.value)

@app.on_event("shutdown")
async def on_shutdown() -> None:
    await SCANNER.close()
    ENGINE.dispose()
    CAMERA.close()
    recognizer.shutdown()
    log.info("Shutdown complete.")

# -----------------------------------------------------------------------------
# Status
# -----------------------------------------------------------------------------
def _state() -> Dict[str, Any]:
    return {
        "mode": SCANNER.mode.value,
        "active": ENGINE.active_codes,
        "cached": ENGINE.cached_codes,
        "revealed": ENGINE.revealed_codes,
    }

# Handlers that touch ENGINE/SCANNER are async so they share the loop thread with scan ticks
@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "app": APP_NAME,
        "version": APP_VERSION,
        "camera": CAMERA.ready(),
        "recognizer": recognizer.status(),
        "mode": SCANNER.mode.value,
        "holding": SCANNER.holding,
    }

@app.get("/state")
async def state() -> Dict[str, Any]:
    return _state()

@app.get("/render")
async def render_all() -> Dict[str, Any]:
    return BOARD.snapshot()

@app.get("/render/{area}")
async def render_area(area: str) -> Dict[str, Any]:
    if area not in AREAS:
        raise HTTPException(404, f"unknown area '{area}'")
    return {"area": area, "entries": BOARD.entries(area)}

# -----------------------------------------------------------------------------
# Camera
# -----------------------------------------------------------------------------
@app.get("/camera/stream")
def camera_stream():
    if not CAMERA.ready():
        raise HTTPException(500, "Camera stream error: camera not initialized")
    return StreamingResponse(CAMERA.preview(), media_type="multipart/x-mixed-replace; boundary=frame")

# -----------------------------------------------------------------------------
# Mode / scanning
# -----------------------------------------------------------------------------
@app.post("/mode/{mode}")
async def set_mode(mode: str) -> Dict[str, Any]:
    try:
        return {"mode": SCANNER.set_mode(mode).value}
    except ValueError:
        raise HTTPException(400, "mode must be 'question' or 'answer'")

@app.post("/scan/press")
async def scan_press() -> Dict[str, Any]:
    started = SCANNER.press()
    return {"holding": SCANNER.holding, "started": started}

@app.post("/scan/release")
async def scan_release() -> Dict[str, Any]:
    await SCANNER.release()
    return {"holding": SCANNER.holding}

@app.post("/scan/tick")
async def scan_tick() -> Dict[str, Any]:
    applied = await SCANNER.tick()
    return {"applied": applied, **_state()}

@app.post("/reset")
async def reset(hard: bool = False, confirm: bool = False) -> Dict[str, Any]:
    if hard and not confirm:
        raise HTTPException(400, "hard reset discards captured answers; pass confirm=true")
    ENGINE.reset(hard=hard)
    return {"hard": hard, **_state()}
