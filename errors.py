"""Errors: failure taxonomy shared by the pipeline, job manager, and CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class EnhancerError(RuntimeError):
    """Base class for every failure surfaced to callers.

    `reason` is the stable taxonomy code persisted on failed jobs and shown
    by status queries; the message is the human-readable detail.
    """

    reason = "enhancer_error"

    def __init__(self, message: str = "", *, reason: Optional[str] = None) -> None:
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason

    def describe(self) -> str:
        detail = str(self)
        if detail == self.reason:
            return self.reason
        return f"{self.reason}: {detail}"


class InputNotFound(EnhancerError):
    reason = "input_not_found"


class InvalidVideoFormat(EnhancerError):
    reason = "invalid_video_format"


class ExtractionFailed(EnhancerError):
    reason = "extraction_failed"


class NoFramesFound(EnhancerError):
    reason = "no_frames_found"


class AssemblyFailed(EnhancerError):
    reason = "assembly_failed"


class ProcessingFailed(EnhancerError):
    """Frame processing halted; `cause` is the frame-level error."""

    reason = "processing_failed"

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class ToolNotFound(EnhancerError):
    reason = "script_not_found"


class ServiceUnreachable(EnhancerError):
    reason = "service_unreachable"


class InvalidResponse(EnhancerError):
    reason = "invalid_response"


class JobNotFound(EnhancerError):
    reason = "job_not_found"


class JobCancelled(EnhancerError):
    reason = "cancelled"


class MotionEstimationError(EnhancerError):
    reason = "motion_estimation_failed"


class FrameEnhancementError(EnhancerError):
    reason = "frame_enhancement_failed"

    def __init__(self, message: str = "", *, frame: Optional[Path] = None) -> None:
        super().__init__(message)
        self.frame = frame


class BatchEnhancementError(EnhancerError):
    """A batched request stopped at `failed_index`; `completed` are the outputs before it."""

    reason = "batch_enhancement_failed"

    def __init__(
        self,
        message: str = "",
        *,
        completed: Sequence[Path] = (),
        failed_index: int = 0,
    ) -> None:
        super().__init__(message)
        self.completed = list(completed)
        self.failed_index = failed_index
