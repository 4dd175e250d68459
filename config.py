"""Config: enhancement model presets, option defaults, and runtime settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────────

DEFAULT_MODEL = "realism"
DEFAULT_FPS = 24
DEFAULT_BATCH_SIZE = 4
DEFAULT_STRENGTH = 0.7
DEFAULT_BLEND_FACTOR = 0.3

FPS_RANGE = (1, 120)
BATCH_SIZE_RANGE = (1, 32)

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_WORK_DIR = ".video_enhancer_work"
DEFAULT_STATE_DIR = ".video_enhancer_cache"
DEFAULT_REQUEST_TIMEOUT = 120.0
CODEC_TIMEOUT_SECONDS = 3600.0

VIDEO_EXTENSIONS = (".mp4", ".avi", ".mov", ".mkv", ".webm", ".m4v", ".wmv", ".flv")


@dataclass(frozen=True)
class ModelPreset:
    name: str
    model: str
    prompt: str
    description: str


ENHANCEMENT_MODELS: dict[str, ModelPreset] = {
    "realism": ModelPreset(
        name="realism",
        model="llava",
        prompt=(
            "Enhance this image. Keep structure identical. Improve realism, detail, "
            "and clarity. Do NOT change shapes, objects, or composition. Maintain "
            "exact colors and lighting balance."
        ),
        description="Realistic enhancement with detail preservation",
    ),
    "upscale": ModelPreset(
        name="upscale",
        model="llava",
        prompt=(
            "Upscale and enhance this image. Preserve all details exactly. Increase "
            "sharpness and clarity. Do NOT alter content, colors, or structure."
        ),
        description="Upscaling with detail enhancement",
    ),
    "denoise": ModelPreset(
        name="denoise",
        model="llava",
        prompt=(
            "Remove noise and grain from this image. Keep all details and structure "
            "exactly the same. Only reduce noise artifacts."
        ),
        description="Noise reduction only",
    ),
    "sharpen": ModelPreset(
        name="sharpen",
        model="llava",
        prompt=(
            "Sharpen this image. Enhance edge clarity. Keep all content exactly the "
            "same. Do NOT change colors or add details."
        ),
        description="Sharpening enhancement",
    ),
    "cinematic": ModelPreset(
        name="cinematic",
        model="llava",
        prompt=(
            "Enhance this image with cinematic quality. Improve color grading subtly. "
            "Enhance contrast and detail. Keep all content and composition identical."
        ),
        description="Cinematic color grading",
    ),
}


# ── Functions ──────────────────────────────────────────────────────────────────


def get_model(name: str) -> ModelPreset:
    """Return the preset for `name`, falling back to the default preset."""
    preset = ENHANCEMENT_MODELS.get(name)
    if preset is None:
        logger.warning("Unknown model '%s', falling back to '%s'", name, DEFAULT_MODEL)
        return ENHANCEMENT_MODELS[DEFAULT_MODEL]
    return preset


def clamp(value, low, high):
    return max(low, min(high, value))


@dataclass(frozen=True)
class Settings:
    ollama_host: str = DEFAULT_OLLAMA_HOST
    work_dir: Path = Path(DEFAULT_WORK_DIR)
    state_dir: Path = Path(DEFAULT_STATE_DIR)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    codec_timeout: float = CODEC_TIMEOUT_SECONDS
    otlp_endpoint: Optional[str] = None


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    ollama_host: Optional[str] = None,
    work_dir: Optional[str] = None,
    state_dir: Optional[str] = None,
) -> Settings:
    """Build settings from the environment, letting explicit arguments win."""
    env = os.environ if environ is None else environ

    timeout_raw = env.get("VIDEO_ENHANCER_REQUEST_TIMEOUT", "")
    try:
        request_timeout = float(timeout_raw) if timeout_raw else DEFAULT_REQUEST_TIMEOUT
    except ValueError:
        logger.warning("Ignoring invalid VIDEO_ENHANCER_REQUEST_TIMEOUT=%r", timeout_raw)
        request_timeout = DEFAULT_REQUEST_TIMEOUT
    if request_timeout <= 0:
        request_timeout = DEFAULT_REQUEST_TIMEOUT

    return Settings(
        ollama_host=(ollama_host or env.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST).rstrip("/"),
        work_dir=Path(work_dir or env.get("VIDEO_ENHANCER_WORK_DIR") or DEFAULT_WORK_DIR)
        .expanduser()
        .resolve(),
        state_dir=Path(state_dir or env.get("VIDEO_ENHANCER_STATE_DIR") or DEFAULT_STATE_DIR)
        .expanduser()
        .resolve(),
        request_timeout=request_timeout,
        otlp_endpoint=env.get("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or None,
    )
