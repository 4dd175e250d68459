"""Frame enhancement: inference-service call with a local filter fallback."""

from __future__ import annotations

import base64
import binascii
import io
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter

from errors import (
    BatchEnhancementError,
    EnhancerError,
    FrameEnhancementError,
    InvalidResponse,
    ServiceUnreachable,
)
from inference import OllamaClient

logger = logging.getLogger(__name__)

SmoothFn = Callable[[Path, Path], Path]


@dataclass(frozen=True)
class EnhanceOptions:
    model_name: str
    prompt: str
    strength: float

    def qualified_prompt(self) -> str:
        return f"{self.prompt} Strength: {self.strength}"


@dataclass(frozen=True)
class FrameDescriptor:
    source: Path
    destination: Path
    index: int
    # Set only on the first descriptor of a chunk, to carry smoothing across chunks.
    previous_enhanced: Optional[Path] = None


@dataclass
class EnhanceStats:
    service_frames: int = 0
    fallback_frames: int = 0


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def staging_path(destination: Path) -> Path:
    """Hidden sibling of `destination` where a frame is built before publishing."""
    return destination.with_name(f".{destination.name}.part")


def _save_png(image: Image.Image, output_path: Path) -> None:
    temp_path = output_path.with_name(f".{output_path.name}.tmp")
    try:
        image.save(temp_path, format="PNG")
        os.replace(temp_path, output_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def apply_local_enhancement(input_path: Path, output_path: Path, strength: float) -> Path:
    """Deterministic sharpen/saturation/contrast filter used when inference is unavailable."""
    radius = _round_half_up(strength * 2)
    contrast = 1.0 + strength * 0.2
    saturation = 1.0 + strength * 0.1

    with Image.open(input_path) as image:
        frame = image.convert("RGB")

    if radius > 0:
        frame = frame.filter(ImageFilter.UnsharpMask(radius=radius, percent=50, threshold=0))
    frame = ImageEnhance.Color(frame).enhance(saturation)

    pixels = np.asarray(frame, dtype=np.float64) * contrast - 128.0 * (contrast - 1.0)
    pixels = np.clip(np.floor(pixels + 0.5), 0, 255).astype(np.uint8)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    _save_png(Image.fromarray(pixels), output_path)
    return output_path


class FrameEnhancer:
    """Enhance frames through the inference service, degrading to a local filter.

    Service failures never escalate; only local problems (unreadable input,
    unwritable output) raise `FrameEnhancementError`.
    """

    def __init__(self, client: Optional[OllamaClient]) -> None:
        self.client = client
        self.stats = EnhanceStats()

    def enhance(self, input_path: Path, output_path: Path, options: EnhanceOptions) -> Path:
        try:
            data = input_path.read_bytes()
            with Image.open(io.BytesIO(data)) as image:
                size = image.size
        except OSError as exc:
            raise FrameEnhancementError(f"Cannot read frame {input_path.name}: {exc}", frame=input_path) from exc

        output_path.parent.mkdir(parents=True, exist_ok=True)
        returned = self._request_enhancement(data, options, input_path.name)
        if returned is not None:
            try:
                self._save_returned(returned, size, output_path)
                self.stats.service_frames += 1
                return output_path
            except Exception as exc:
                # Pillow rejects some replies outside OSError (e.g. DecompressionBombError).
                logger.warning("%s: undecodable image from inference service (%s)", input_path.name, exc)

        try:
            apply_local_enhancement(input_path, output_path, options.strength)
        except OSError as exc:
            raise FrameEnhancementError(
                f"Local enhancement failed for {input_path.name}: {exc}", frame=input_path
            ) from exc
        self.stats.fallback_frames += 1
        return output_path

    def enhance_batch(
        self,
        frames: Sequence[FrameDescriptor],
        options: EnhanceOptions,
        smooth: Optional[SmoothFn] = None,
    ) -> list[Path]:
        """Enhance `frames` strictly in order, smoothing each against its predecessor.

        On a failing frame, raises BatchEnhancementError carrying the outputs
        finished before it.
        """
        outputs: list[Path] = []
        previous = frames[0].previous_enhanced if frames else None
        for position, frame in enumerate(frames):
            try:
                output = self.enhance_frame(frame, options, smooth, previous)
            except EnhancerError as exc:
                raise BatchEnhancementError(
                    f"frame {frame.index} ({frame.source.name}): {exc}",
                    completed=outputs,
                    failed_index=position,
                ) from exc
            outputs.append(output)
            previous = output
        return outputs

    def enhance_frame(
        self,
        frame: FrameDescriptor,
        options: EnhanceOptions,
        smooth: Optional[SmoothFn] = None,
        previous: Optional[Path] = None,
    ) -> Path:
        """Enhance and smooth one frame, then publish it under its final name.

        The destination appears only once the frame is fully processed, so a
        frame present in the output directory is always a finished one.
        """
        staged = staging_path(frame.destination)
        try:
            self.enhance(frame.source, staged, options)
            if smooth is not None and previous is not None:
                smooth(staged, previous)
            try:
                os.replace(staged, frame.destination)
            except OSError as exc:
                raise FrameEnhancementError(
                    f"Cannot publish {frame.destination.name}: {exc}", frame=frame.source
                ) from exc
        finally:
            staged.unlink(missing_ok=True)
        return frame.destination

    def _request_enhancement(self, data: bytes, options: EnhanceOptions, name: str) -> Optional[str]:
        if self.client is None:
            return None
        try:
            images = self.client.generate(
                options.model_name,
                options.qualified_prompt(),
                [base64.b64encode(data).decode("ascii")],
            )
        except (ServiceUnreachable, InvalidResponse) as exc:
            logger.warning("%s: inference failed (%s), using local fallback", name, exc.describe())
            return None
        if not images:
            logger.debug("%s: inference returned no image, using local fallback", name)
            return None
        return images[0]

    @staticmethod
    def _save_returned(encoded: str, size: tuple[int, int], output_path: Path) -> None:
        try:
            raw = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
        with Image.open(io.BytesIO(raw)) as image:
            enhanced = image.convert("RGB")
        if enhanced.size != size:
            enhanced = enhanced.resize(size, Image.Resampling.LANCZOS)
        _save_png(enhanced, output_path)
