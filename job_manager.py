"""Job manager: durable job records, lifecycle transitions, and progress.

One worker thread owns the in-memory job table and applies commands from a
FIFO queue one at a time, so concurrent callers never interleave updates to
the same record. Every mutation is written through to a JSON record on disk
before the caller is released.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import os
import queue
import shutil
import tempfile
import threading
from concurrent.futures import Future
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_BLEND_FACTOR,
    DEFAULT_FPS,
    DEFAULT_MODEL,
    DEFAULT_STRENGTH,
)
from errors import JobNotFound

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class JobState(str, enum.Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    PROCESSING = "processing"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

HAPPY_PATH_EDGES = {
    JobState.PENDING: JobState.EXTRACTING,
    JobState.EXTRACTING: JobState.PROCESSING,
    JobState.PROCESSING: JobState.ASSEMBLING,
    JobState.ASSEMBLING: JobState.COMPLETED,
}


def can_transition(current: JobState, target: JobState) -> bool:
    if current.is_terminal:
        return False
    if target in (JobState.FAILED, JobState.CANCELLED):
        return True
    return HAPPY_PATH_EDGES.get(current) is target


@dataclass(frozen=True)
class JobOptions:
    model: str = DEFAULT_MODEL
    fps: int = DEFAULT_FPS
    batch_size: int = DEFAULT_BATCH_SIZE
    strength: float = DEFAULT_STRENGTH
    temporal_smoothing: bool = True
    blend_factor: float = DEFAULT_BLEND_FACTOR
    clean: bool = True
    resume: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobOptions":
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)


@dataclass
class Job:
    id: str
    input: Path
    output: Path
    work_dir: Path
    frames_dir: Path
    enhanced_dir: Path
    options: JobOptions = field(default_factory=JobOptions)
    state: JobState = JobState.PENDING
    total_frames: int = 0
    processed_frames: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    @property
    def progress(self) -> int:
        if self.total_frames == 0:
            return 0
        return round(self.processed_frames / self.total_frames * 100)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "input": str(self.input),
            "output": str(self.output),
            "options": asdict(self.options),
            "state": self.state.value,
            "work_dir": str(self.work_dir),
            "frames_dir": str(self.frames_dir),
            "enhanced_dir": str(self.enhanced_dir),
            "total_frames": self.total_frames,
            "processed_frames": self.processed_frames,
            "start_time": self.start_time.isoformat(),
            "error": self.error,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Job":
        """Rebuild a job from its persisted record, validating every field."""
        if not isinstance(data, dict):
            raise ValueError("record is not an object")
        state = JobState(data["state"])
        total = int(data.get("total_frames") or 0)
        processed = int(data.get("processed_frames") or 0)
        if total < 0 or processed < 0:
            raise ValueError("negative frame counters")
        start_raw = data.get("start_time")
        start_time = datetime.fromisoformat(start_raw) if start_raw else datetime.now(timezone.utc)
        error = data.get("error")
        return cls(
            id=str(data["id"]),
            input=Path(data["input"]),
            output=Path(data["output"]),
            work_dir=Path(data["work_dir"]),
            frames_dir=Path(data["frames_dir"]),
            enhanced_dir=Path(data["enhanced_dir"]),
            options=JobOptions.from_dict(data.get("options") or {}),
            state=state,
            total_frames=total,
            processed_frames=min(processed, total) if total else processed,
            start_time=start_time,
            error=None if error is None else str(error),
        )


@dataclass(frozen=True)
class JobStatus:
    state: JobState
    progress: int
    processed_frames: int
    total_frames: int
    error: Optional[str]


def generate_job_id(input_path: Path, output_path: Path) -> str:
    digest = hashlib.md5(f"{input_path}:{output_path}".encode("utf-8")).hexdigest()
    return f"job_{digest[:8]}"


class JobStore:
    """Flat store of one JSON record per job, keyed by job id."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    def path_for(self, job_id: str) -> Path:
        return self.state_dir / f"{job_id}{RECORD_SUFFIX}"

    def save(self, job: Job) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(job.to_record(), indent=2, sort_keys=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{job.id}.", suffix=".tmp", dir=self.state_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(temp_name, self.path_for(job.id))
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def read_state(self, job_id: str) -> Optional[JobState]:
        path = self.path_for(job_id)
        try:
            return JobState(json.loads(path.read_text(encoding="utf-8"))["state"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("Unreadable record %s: %s", path, exc)
            return None

    def delete(self, job_id: str) -> None:
        self.path_for(job_id).unlink(missing_ok=True)

    def load_all(self) -> dict[str, Job]:
        jobs: dict[str, Job] = {}
        if not self.state_dir.is_dir():
            return jobs
        for path in sorted(self.state_dir.glob(f"*{RECORD_SUFFIX}")):
            try:
                job = Job.from_record(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping corrupt job record %s: %s", path.name, exc)
                continue
            jobs[job.id] = job
        return jobs


_STOP = object()


class JobManager:
    def __init__(self, work_dir: Path, state_dir: Path) -> None:
        self.work_dir = Path(work_dir)
        self.store = JobStore(Path(state_dir))
        self._jobs = self.store.load_all()
        self._commands: queue.Queue = queue.Queue()
        self._closed = False
        self._worker = threading.Thread(target=self._serve, name="job-manager", daemon=True)
        self._worker.start()
        if self._jobs:
            logger.debug("Loaded %d persisted job(s)", len(self._jobs))

    # ── Public API ──────────────────────────────────────────────────────────

    def create_or_resume(self, input_path: Path, output_path: Path, options: JobOptions) -> Job:
        """Return the job for (input, output), creating or resetting it as needed."""
        return self._call(self._create_or_resume, Path(input_path), Path(output_path), options)

    def update_state(self, job_id: str, state: JobState) -> Optional[Job]:
        return self._call(self._update_state, job_id, state)

    def update_progress(self, job_id: str, processed: int, total: int) -> Optional[Job]:
        return self._call(self._update_progress, job_id, processed, total)

    def fail(self, job_id: str, error: str) -> Optional[Job]:
        return self._call(self._update_state, job_id, JobState.FAILED, error)

    def complete(self, job_id: str) -> Optional[Job]:
        return self._call(self._update_state, job_id, JobState.COMPLETED)

    def cancel(self, job_id: str) -> Job:
        """Mark a job cancelled; in-flight work stops at its next checkpoint."""
        return self._call(self._cancel, job_id)

    def cleanup(self, job_id: str) -> None:
        self._call(self._cleanup, job_id)

    def get_job(self, job_id: str) -> Job:
        return self._call(self._get_job, job_id)

    def get_status(self, job_id: str) -> JobStatus:
        job = self.get_job(job_id)
        return JobStatus(
            state=job.state,
            progress=job.progress,
            processed_frames=job.processed_frames,
            total_frames=job.total_frames,
            error=job.error,
        )

    def is_cancelled(self, job_id: str) -> bool:
        return self._call(self._is_cancelled, job_id)

    def list_jobs(self) -> list[Job]:
        return self._call(lambda: [replace(job) for job in self._jobs.values()])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._commands.put(_STOP)
        self._worker.join()

    def __enter__(self) -> "JobManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Command queue ───────────────────────────────────────────────────────

    def _call(self, command: Callable[..., Any], *args: Any) -> Any:
        if self._closed:
            raise RuntimeError("JobManager is closed.")
        future: Future = Future()
        self._commands.put((command, args, future))
        return future.result()

    def _serve(self) -> None:
        while True:
            item = self._commands.get()
            if item is _STOP:
                return
            command, args, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(command(*args))
            except BaseException as exc:
                future.set_exception(exc)

    # ── Commands (run on the worker thread only) ────────────────────────────

    def _create_or_resume(self, input_path: Path, output_path: Path, options: JobOptions) -> Job:
        input_path = input_path.expanduser().resolve()
        output_path = output_path.expanduser().resolve()
        job_id = generate_job_id(input_path, output_path)
        existing = self._jobs.get(job_id)

        if existing is not None and options.resume:
            logger.info("Resuming job %s from state %s", job_id, existing.state.value)
            existing.options = options
            if existing.state is not JobState.PENDING:
                existing.state = JobState.PENDING
                existing.error = None
            existing.frames_dir.mkdir(parents=True, exist_ok=True)
            existing.enhanced_dir.mkdir(parents=True, exist_ok=True)
            self._persist(existing, adopt_external_cancel=False)
            return replace(existing)

        if existing is not None:
            logger.info("Starting job %s from scratch", job_id)
            self._remove_work_dir(existing.work_dir)

        job = self._new_job(job_id, input_path, output_path, options)
        self._remove_work_dir(job.work_dir)
        job.frames_dir.mkdir(parents=True, exist_ok=True)
        job.enhanced_dir.mkdir(parents=True, exist_ok=True)
        self._jobs[job_id] = job
        self._persist(job, adopt_external_cancel=False)
        return replace(job)

    def _new_job(self, job_id: str, input_path: Path, output_path: Path, options: JobOptions) -> Job:
        work_dir = (self.work_dir / job_id).resolve()
        return Job(
            id=job_id,
            input=input_path,
            output=output_path,
            work_dir=work_dir,
            frames_dir=work_dir / "frames",
            enhanced_dir=work_dir / "enhanced",
            options=options,
        )

    def _update_state(self, job_id: str, state: JobState, error: Optional[str] = None) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        self._adopt_external_cancel(job)
        if not can_transition(job.state, state):
            logger.warning("Ignoring transition %s -> %s for job %s", job.state.value, state.value, job_id)
            return replace(job)
        job.state = state
        if state is JobState.FAILED:
            job.error = error
        self._persist(job)
        return replace(job)

    def _update_progress(self, job_id: str, processed: int, total: int) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        total = max(0, int(total))
        processed = max(0, int(processed))
        if total:
            processed = min(processed, total)
        job.total_frames = total
        job.processed_frames = processed
        self._persist(job)
        return replace(job)

    def _cancel(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}")
        if job.state.is_terminal:
            logger.info("Job %s already %s; nothing to cancel", job_id, job.state.value)
            return replace(job)
        job.state = JobState.CANCELLED
        self._persist(job, adopt_external_cancel=False)
        return replace(job)

    def _cleanup(self, job_id: str) -> None:
        job = self._jobs.pop(job_id, None)
        if job is not None:
            self._remove_work_dir(job.work_dir)
        else:
            # Covers ids whose record was skipped as corrupt at load time.
            work_dir = (self.work_dir / job_id).resolve()
            if work_dir.parent == self.work_dir.resolve():
                self._remove_work_dir(work_dir)
        self.store.delete(job_id)

    def _get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}")
        self._adopt_external_cancel(job)
        return replace(job)

    def _is_cancelled(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        self._adopt_external_cancel(job)
        return job.state is JobState.CANCELLED

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _adopt_external_cancel(self, job: Job) -> None:
        """Honor a cancellation another process wrote to this job's record."""
        if job.state.is_terminal:
            return
        if self.store.read_state(job.id) is JobState.CANCELLED:
            logger.info("Job %s was cancelled externally", job.id)
            job.state = JobState.CANCELLED

    def _persist(self, job: Job, *, adopt_external_cancel: bool = True) -> None:
        if adopt_external_cancel:
            self._adopt_external_cancel(job)
        self.store.save(job)

    @staticmethod
    def _remove_work_dir(work_dir: Path) -> None:
        if work_dir.exists():
            shutil.rmtree(work_dir)
