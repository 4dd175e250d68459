"""Temporal: motion-compensated blending of consecutive enhanced frames."""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path

import numpy as np
from PIL import Image

from motion import MotionField, estimate_motion, motion_magnitude

logger = logging.getLogger(__name__)

BLENDABLE_MODES = ("L", "RGB", "RGBA")


def motion_offset(value: float) -> int:
    """Round half up, so sampling `x + value` lands on the nearest pixel."""
    return math.floor(value + 0.5)


def blend_frames(
    current: np.ndarray,
    previous: np.ndarray,
    field: MotionField,
    blend_factor: float,
) -> np.ndarray:
    """Blend `previous`, shifted by the average motion, into `current`.

    The effective weight is `blend_factor * confidence`. Pixels whose motion
    compensated sample falls outside `previous` keep their current value.
    """
    if current.shape != previous.shape:
        raise ValueError(f"Frame shapes differ: {current.shape} vs {previous.shape}")

    adjusted = blend_factor * field.confidence
    output = current.copy()
    if adjusted <= 0.0:
        return output

    height, width = current.shape[:2]
    offset_x = motion_offset(field.avg_motion_x)
    offset_y = motion_offset(field.avg_motion_y)
    x0, x1 = max(0, -offset_x), min(width, width - offset_x)
    y0, y1 = max(0, -offset_y), min(height, height - offset_y)
    if x0 >= x1 or y0 >= y1:
        return output

    cur = current[y0:y1, x0:x1].astype(np.float64)
    prev = previous[y0 + offset_y : y1 + offset_y, x0 + offset_x : x1 + offset_x].astype(np.float64)
    blended = np.floor(cur * (1.0 - adjusted) + prev * adjusted + 0.5)
    output[y0:y1, x0:x1] = np.clip(blended, 0, 255).astype(current.dtype)
    return output


def _load_pair(current_path: Path, previous_path: Path) -> tuple[Image.Image, Image.Image]:
    with Image.open(current_path) as image:
        current = image.convert(image.mode if image.mode in BLENDABLE_MODES else "RGB")
    with Image.open(previous_path) as image:
        previous = image.convert(current.mode)
    if previous.size != current.size:
        previous = previous.resize(current.size, Image.Resampling.LANCZOS)
    return current, previous


def smooth_frame(current_path: Path, previous_path: Path, blend_factor: float) -> Path:
    """Smooth `current_path` in place against the previous enhanced frame."""
    current, previous = _load_pair(current_path, previous_path)

    field = estimate_motion(
        np.asarray(previous.convert("L"), dtype=np.int32),
        np.asarray(current.convert("L"), dtype=np.int32),
    )
    logger.debug(
        "%s: motion (%.2f, %.2f) |%.2f| max %.2f confidence %.3f",
        current_path.name,
        field.avg_motion_x,
        field.avg_motion_y,
        motion_magnitude(field),
        field.max_motion,
        field.confidence,
    )

    pixels = blend_frames(np.asarray(current), np.asarray(previous), field, blend_factor)

    temp_path = current_path.with_name(f".{current_path.name}.tmp")
    Image.fromarray(pixels).save(temp_path, format="PNG")
    os.replace(temp_path, current_path)
    return current_path
