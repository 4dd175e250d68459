"""Frame processing: ordered, batched enhancement with retry and sequential fallback.

Frames are folded over in order with a carried "last enhanced frame"
reference. Chunks exist only to amortize per-call overhead; every frame is
still enhanced after its predecessor because temporal smoothing reads the
predecessor's enhanced output.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional, Sequence

from config import DEFAULT_BATCH_SIZE, DEFAULT_BLEND_FACTOR
from errors import BatchEnhancementError, EnhancerError, FrameEnhancementError, JobCancelled
from frame_enhancer import EnhanceOptions, FrameDescriptor, FrameEnhancer, SmoothFn
from temporal import smooth_frame

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class ProcessingOptions:
    model_name: str
    prompt: str
    strength: float
    temporal_smoothing: bool = True
    blend_factor: float = DEFAULT_BLEND_FACTOR
    batch_size: int = DEFAULT_BATCH_SIZE

    def enhance_options(self) -> EnhanceOptions:
        return EnhanceOptions(model_name=self.model_name, prompt=self.prompt, strength=self.strength)


def chunk_frames(frames: Sequence[Path], size: int) -> list[list[Path]]:
    if size < 1:
        raise ValueError("Batch size must be >= 1.")
    return [list(frames[start : start + size]) for start in range(0, len(frames), size)]


class FrameProcessor:
    def __init__(
        self,
        enhancer: FrameEnhancer,
        *,
        smoother: Callable[[Path, Path, float], Path] = smooth_frame,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.enhancer = enhancer
        self.smoother = smoother
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

    def process_frames(
        self,
        frames: Sequence[Path],
        output_dir: Path,
        options: ProcessingOptions,
        on_progress: Optional[Callable[[int], None]] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
        reference: Optional[Path] = None,
    ) -> list[Path]:
        """Enhance `frames` into `output_dir`, keeping filenames and order.

        `on_progress` receives the running count of frames finished by this
        call after every chunk. `is_cancelled` is probed before each chunk;
        a positive answer raises JobCancelled and leaves finished frames in
        place. `reference` seeds the temporal chain, e.g. the enhanced
        predecessor of the first frame when resuming. Raises
        FrameEnhancementError once a frame exhausts its retries.
        """
        outputs: list[Path] = []
        last_enhanced = reference
        processed = 0

        for chunk_number, chunk in enumerate(chunk_frames(frames, options.batch_size)):
            if is_cancelled is not None and is_cancelled():
                raise JobCancelled(f"Cancelled after {processed} of {len(frames)} frame(s)")

            offset = chunk_number * options.batch_size
            descriptors = [
                FrameDescriptor(source=frame, destination=output_dir / frame.name, index=offset + position)
                for position, frame in enumerate(chunk)
            ]
            if options.temporal_smoothing and last_enhanced is not None:
                descriptors[0] = replace(descriptors[0], previous_enhanced=last_enhanced)

            chunk_outputs = self._process_chunk(descriptors, options)
            outputs.extend(chunk_outputs)
            last_enhanced = chunk_outputs[-1]
            processed += len(chunk)
            if on_progress is not None:
                on_progress(processed)

        return outputs

    def process_single_frame(self, descriptor: FrameDescriptor, options: ProcessingOptions) -> Path:
        """Enhance one frame with bounded retries, smoothing it best-effort before it is published."""
        smooth = self._smoother_for(options)
        attempt = 0
        while True:
            try:
                return self.enhancer.enhance_frame(
                    descriptor,
                    options.enhance_options(),
                    smooth,
                    descriptor.previous_enhanced,
                )
            except EnhancerError as exc:
                if attempt >= self.max_retries:
                    raise FrameEnhancementError(
                        f"frame {descriptor.index} ({descriptor.source.name}) failed after "
                        f"{attempt + 1} attempt(s): {exc}",
                        frame=descriptor.source,
                    ) from exc
                attempt += 1
                logger.warning(
                    "Frame enhancement failed, retrying (%d left): %s",
                    self.max_retries - attempt + 1,
                    exc,
                )
                self.sleep(self.retry_delay)

    def _process_chunk(self, descriptors: list[FrameDescriptor], options: ProcessingOptions) -> list[Path]:
        try:
            return self.enhancer.enhance_batch(
                descriptors,
                options.enhance_options(),
                self._smoother_for(options),
            )
        except BatchEnhancementError as exc:
            completed = list(exc.completed)
            logger.warning(
                "Batch processing failed, falling back to sequential from frame %d: %s",
                descriptors[len(completed)].index,
                exc,
            )

        reference = completed[-1] if completed else descriptors[0].previous_enhanced
        return completed + self._process_sequential(descriptors[len(completed):], options, reference)

    def _process_sequential(
        self,
        descriptors: Sequence[FrameDescriptor],
        options: ProcessingOptions,
        reference: Optional[Path],
    ) -> list[Path]:
        outputs: list[Path] = []
        for descriptor in descriptors:
            if options.temporal_smoothing:
                descriptor = replace(descriptor, previous_enhanced=reference)
            output = self.process_single_frame(descriptor, options)
            outputs.append(output)
            reference = output
        return outputs

    def _smoother_for(self, options: ProcessingOptions) -> Optional[SmoothFn]:
        if not options.temporal_smoothing:
            return None

        def smooth(current: Path, previous: Path) -> Path:
            return self._smooth(current, previous, options.blend_factor)

        return smooth

    def _smooth(self, current: Path, previous: Path, blend_factor: float) -> Path:
        try:
            return self.smoother(current, previous, blend_factor)
        except (EnhancerError, OSError, ValueError) as exc:
            logger.warning("Temporal smoothing skipped for %s: %s", current.name, exc)
            return current
