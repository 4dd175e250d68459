"""Pipeline: extract, process, and assemble one job, checkpointing each phase."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from codec import FRAME_GLOB, FFmpegCodec
from config import get_model
from errors import EnhancerError, JobCancelled, JobNotFound, NoFramesFound, ProcessingFailed
from frame_processor import FrameProcessor, ProcessingOptions
from job_manager import Job, JobManager, JobState
from toolchain import progress_write
from tracing import traced

logger = logging.getLogger(__name__)


def format_time(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60
    if hours:
        return f"{hours}h {minutes}m {secs:.1f}s"
    if minutes:
        return f"{minutes}m {secs:.1f}s"
    return f"{secs:.1f}s"


def list_frames(directory: Path) -> list[Path]:
    """Frame images in `directory`, in temporal (lexicographic) order."""
    if not directory.is_dir():
        return []
    return sorted(directory.glob(FRAME_GLOB))


def processing_options(job: Job) -> ProcessingOptions:
    preset = get_model(job.options.model)
    return ProcessingOptions(
        model_name=preset.model,
        prompt=preset.prompt,
        strength=job.options.strength,
        temporal_smoothing=job.options.temporal_smoothing,
        blend_factor=job.options.blend_factor,
        batch_size=job.options.batch_size,
    )


class Pipeline:
    def __init__(
        self,
        job_manager: JobManager,
        codec: FFmpegCodec,
        processor: FrameProcessor,
        *,
        show_progress: bool = True,
    ) -> None:
        self.job_manager = job_manager
        self.codec = codec
        self.processor = processor
        self.show_progress = show_progress

    @traced
    def run(self, job: Job) -> Path:
        """Run every phase for `job` and return the output video path.

        Phase failures mark the job failed with the error's reason and leave
        working files in place for diagnosis or resume. Cancellation leaves
        the job cancelled and raises JobCancelled.
        """
        total_start = time.time()
        try:
            self._advance(job, JobState.EXTRACTING)
            print("Extracting frames...")
            step_start = time.time()
            total = self.extract(job)
            print(f"  Frames: {total}")
            print(f"  Time: {format_time(time.time() - step_start)}\n")

            self._advance(job, JobState.PROCESSING)
            print("Enhancing frames...")
            step_start = time.time()
            self.process(job)
            print(f"  Time: {format_time(time.time() - step_start)}\n")

            self._advance(job, JobState.ASSEMBLING)
            print("Assembling output video...")
            step_start = time.time()
            output_video = self.assemble(job)
            print(f"  Time: {format_time(time.time() - step_start)}\n")
        except JobCancelled:
            progress_write(f"Job {job.id} cancelled; finished frames kept in {job.work_dir}")
            raise
        except EnhancerError as exc:
            self.job_manager.fail(job.id, exc.describe())
            raise
        except Exception as exc:
            self.job_manager.fail(job.id, f"{type(exc).__name__}: {exc}")
            raise

        completed = self.job_manager.complete(job.id)
        if completed is not None and completed.state is JobState.CANCELLED:
            raise JobCancelled(f"Job {job.id} was cancelled during assembly")

        self._print_summary(job, output_video, time.time() - total_start)
        if job.options.clean:
            self.job_manager.cleanup(job.id)
        else:
            print(f"Working files kept at: {job.work_dir}")
        return output_video

    @traced
    def extract(self, job: Job) -> int:
        existing = len(list_frames(job.frames_dir))
        if job.options.resume and existing > 0:
            progress_write(f"Reusing {existing} previously extracted frame(s).")
            total = existing
        else:
            total = self.codec.extract(job.input, job.frames_dir, job.options.fps)
        self.job_manager.update_progress(job.id, 0, total)
        return total

    @traced
    def process(self, job: Job) -> int:
        """Enhance every frame not yet present in the enhanced directory.

        Returns the number of frames enhanced by this call.
        """
        frames = list_frames(job.frames_dir)
        if not frames:
            raise NoFramesFound(f"No frames found in {job.frames_dir}")

        done_names = {path.name for path in list_frames(job.enhanced_dir)}
        remaining = [frame for frame in frames if frame.name not in done_names]
        total = len(frames)
        done = total - len(remaining)
        self.job_manager.update_progress(job.id, done, total)

        if not remaining:
            progress_write(f"All {total} frame(s) already enhanced.")
            return 0
        if done:
            progress_write(f"Skipping {done} already-enhanced frame(s).")

        options = processing_options(job)
        reference = self._resume_reference(job, frames, remaining[0]) if options.temporal_smoothing else None

        with tqdm(
            total=total,
            initial=done,
            desc="Enhancing",
            unit="frame",
            disable=not self.show_progress,
        ) as bar:

            def on_progress(processed: int) -> None:
                bar.update(done + processed - bar.n)
                self.job_manager.update_progress(job.id, done + processed, total)

            try:
                outputs = self.processor.process_frames(
                    remaining,
                    job.enhanced_dir,
                    options,
                    on_progress=on_progress,
                    is_cancelled=lambda: self.job_manager.is_cancelled(job.id),
                    reference=reference,
                )
            except JobCancelled:
                raise
            except EnhancerError as exc:
                raise ProcessingFailed(str(exc), cause=exc) from exc

        return len(outputs)

    @traced
    def assemble(self, job: Job) -> Path:
        return self.codec.assemble(job.enhanced_dir, job.output, job.options.fps)

    def _advance(self, job: Job, state: JobState) -> None:
        updated = self.job_manager.update_state(job.id, state)
        if updated is None:
            raise JobNotFound(f"Job not found: {job.id}")
        if updated.state is JobState.CANCELLED:
            raise JobCancelled(f"Job {job.id} was cancelled")
        if updated.state is not state:
            raise EnhancerError(
                f"Job {job.id} cannot enter {state.value} from {updated.state.value}",
                reason="invalid_state",
            )

    @staticmethod
    def _resume_reference(job: Job, frames: list[Path], first_remaining: Path) -> Optional[Path]:
        position = frames.index(first_remaining)
        if position == 0:
            return None
        candidate = job.enhanced_dir / frames[position - 1].name
        return candidate if candidate.exists() else None

    def _print_summary(self, job: Job, output_video: Path, elapsed: float) -> None:
        stats = self.processor.enhancer.stats
        print("=" * 60)
        print("Complete!")
        print(f"Job:        {job.id}")
        print(f"Total time: {format_time(elapsed)}")
        print(f"Output:     {output_video}")
        if output_video.exists():
            output_size_mb = output_video.stat().st_size / (1024 * 1024)
            print(f"Output size: {output_size_mb:.1f} MB")
        if stats.fallback_frames:
            print(
                f"Recovered {stats.fallback_frames} frame(s) with the local fallback filter "
                f"({stats.service_frames} enhanced by the inference service)."
            )
        print("=" * 60 + "\n")
