"""Motion: coarse block-matching motion estimation between two frames.

The estimator answers one question: is there coherent camera or object
motion between two frames that is worth compensating for? It partitions the
current frame into 16x16 blocks, finds for each block the displacement
within +/-4 pixels that minimizes the sum of absolute differences (SAD)
against the previous frame, and summarizes the block vectors into an
average motion, a maximum magnitude, and a confidence score.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from errors import MotionEstimationError

BLOCK_SIZE = 16
SEARCH_RADIUS = 4


@dataclass(frozen=True)
class MotionField:
    avg_motion_x: float
    avg_motion_y: float
    max_motion: float
    confidence: float
    frame_width: int
    frame_height: int


def load_grayscale(path: Path) -> np.ndarray:
    with Image.open(path) as image:
        return np.asarray(image.convert("L"), dtype=np.int32)


def candidate_displacements(search_radius: int = SEARCH_RADIUS) -> list[tuple[int, int]]:
    """Candidates in scan order: dy ascending, then dx ascending."""
    return [
        (dx, dy)
        for dy in range(-search_radius, search_radius + 1)
        for dx in range(-search_radius, search_radius + 1)
    ]


def block_motion_vectors(
    previous: np.ndarray,
    current: np.ndarray,
    *,
    block_size: int = BLOCK_SIZE,
    search_radius: int = SEARCH_RADIUS,
) -> np.ndarray:
    """Return an (rows, cols, 2) array of per-block (dx, dy) vectors.

    Partial blocks at the bottom/right edge are skipped. Candidates whose
    shifted block leaves the frame are never considered, and ties keep the
    earliest candidate in scan order.
    """
    if previous.shape != current.shape:
        raise MotionEstimationError(
            f"Frame dimensions do not match: {previous.shape[::-1]} vs {current.shape[::-1]}"
        )
    if previous.ndim != 2:
        raise MotionEstimationError("Motion estimation expects single-channel frames")

    height, width = current.shape
    rows = height // block_size
    cols = width // block_size
    if rows == 0 or cols == 0:
        return np.zeros((0, 0, 2), dtype=np.int32)

    span_y = rows * block_size
    span_x = cols * block_size
    cur = current[:span_y, :span_x].astype(np.int32)
    padded = np.pad(previous.astype(np.int32), search_radius, mode="constant")
    origins_y = np.arange(rows) * block_size
    origins_x = np.arange(cols) * block_size

    candidates = candidate_displacements(search_radius)
    costs = np.empty((len(candidates), rows, cols), dtype=np.float64)
    for index, (dx, dy) in enumerate(candidates):
        top = search_radius + dy
        left = search_radius + dx
        shifted = padded[top : top + span_y, left : left + span_x]
        sad = np.abs(cur - shifted).reshape(rows, block_size, cols, block_size).sum(axis=(1, 3))

        start_y = origins_y + dy
        start_x = origins_x + dx
        valid_y = (start_y >= 0) & (start_y + block_size <= height)
        valid_x = (start_x >= 0) & (start_x + block_size <= width)
        costs[index] = np.where(np.outer(valid_y, valid_x), sad, np.inf)

    best = costs.argmin(axis=0)
    table = np.array(candidates, dtype=np.int32)
    return table[best]


def summarize_vectors(vectors: np.ndarray, width: int, height: int) -> MotionField:
    flat = vectors.reshape(-1, 2).astype(np.float64)
    if flat.size == 0:
        # Frame smaller than one block: nothing to trust.
        return MotionField(0.0, 0.0, 0.0, 0.0, width, height)

    avg_x = float(flat[:, 0].mean())
    avg_y = float(flat[:, 1].mean())
    max_motion = float(np.sqrt((flat ** 2).sum(axis=1)).max())
    variance = float((((flat[:, 0] - avg_x) ** 2) + ((flat[:, 1] - avg_y) ** 2)).mean())
    confidence = max(0.0, 1.0 - variance / (max_motion + 1.0))

    return MotionField(
        avg_motion_x=avg_x,
        avg_motion_y=avg_y,
        max_motion=max_motion,
        confidence=confidence,
        frame_width=width,
        frame_height=height,
    )


def estimate_motion(previous: np.ndarray, current: np.ndarray) -> MotionField:
    """Estimate the motion field between two equal-size grayscale buffers."""
    vectors = block_motion_vectors(previous, current)
    height, width = current.shape
    return summarize_vectors(vectors, width, height)


def estimate_motion_between(previous_path: Path, current_path: Path) -> MotionField:
    return estimate_motion(load_grayscale(previous_path), load_grayscale(current_path))


def motion_magnitude(field: MotionField) -> float:
    return math.hypot(field.avg_motion_x, field.avg_motion_y)
