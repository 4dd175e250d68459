#!/usr/bin/env python3
"""
Video enhancer: AI frame enhancement with motion-compensated temporal smoothing.

This script extracts frames, enhances them through an Ollama vision model
(falling back to a local filter), smooths them over time, and rebuilds the
final video. Jobs are persisted so interrupted runs can be resumed.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.logging import RichHandler

from cli import (
    build_job_options,
    has_job_command,
    parse_args,
    resolve_output_path,
    validate_runtime_args,
)
from codec import FFmpegCodec
from config import ENHANCEMENT_MODELS, VIDEO_EXTENSIONS, ModelPreset, Settings, get_model, load_settings
from errors import InputNotFound, InvalidVideoFormat
from frame_enhancer import FrameEnhancer
from frame_processor import FrameProcessor
from inference import OllamaClient
from job_manager import Job, JobManager, JobOptions, JobStatus
from pipeline import Pipeline
from toolchain import progress_write, resolve_toolchain
from tracing import init_tracing, shutdown_tracing, traced

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level="DEBUG" if verbose else "WARNING",
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler()],
        force=True,
    )


def validate_paths(input_video: Path, output_video: Path) -> tuple[Path, Path]:
    """Check the input exists and looks like a video; prepare the output directory."""
    input_video = input_video.expanduser().resolve()
    if not input_video.is_file():
        raise InputNotFound(f"Input file not found: {input_video}")
    if input_video.suffix.lower() not in VIDEO_EXTENSIONS:
        raise InvalidVideoFormat(f"Invalid video format: {input_video}")

    output_video = output_video.expanduser().resolve()
    if output_video == input_video:
        raise ValueError("Output video path must be different from input video path.")
    output_video.parent.mkdir(parents=True, exist_ok=True)
    return input_video, output_video


def connect_inference(settings: Settings, model: str) -> Optional[OllamaClient]:
    """Return a client for the inference service, or None when it is not reachable."""
    client = OllamaClient(settings.ollama_host, timeout=settings.request_timeout)
    if not client.is_running():
        progress_write(
            f"Warning: Ollama is not reachable at {settings.ollama_host}; "
            "frames will use the local fallback filter. Start it with: ollama serve"
        )
        return None
    if not client.has_model(model):
        progress_write(f"Warning: model '{model}' is not installed. Run: ollama pull {model}")
    return client


def print_banner(job: Job, info_line: Optional[str]) -> None:
    preset = get_model(job.options.model)
    print("\n" + "=" * 60)
    print("Video Enhancer")
    print("=" * 60)
    print(f"Job:      {job.id}")
    print(f"Input:    {job.input}")
    print(f"Output:   {job.output}")
    if info_line:
        print(f"Source:   {info_line}")
    print(f"Model:    {preset.name} ({preset.model})")
    print(f"FPS:      {job.options.fps}")
    print(f"Batch:    {job.options.batch_size}")
    print(f"Strength: {job.options.strength:.2f}")
    if job.options.temporal_smoothing:
        print(f"Temporal: enabled (blend {job.options.blend_factor:.2f})")
    else:
        print("Temporal: disabled")
    print(f"Workspace: {job.work_dir}")
    print("=" * 60 + "\n")


# ── Public API ─────────────────────────────────────────────────────────────────


@traced
def enhance(
    input_video: Path,
    output_video: Path,
    options: Optional[JobOptions] = None,
    *,
    settings: Optional[Settings] = None,
    codec: Optional[FFmpegCodec] = None,
    client: Optional[OllamaClient] = None,
    job_manager: Optional[JobManager] = None,
    show_progress: bool = True,
) -> Path:
    """Enhance `input_video` into `output_video` and return the output path."""
    options = options or JobOptions()
    settings = settings or load_settings()
    input_video, output_video = validate_paths(Path(input_video), Path(output_video))

    if codec is None:
        codec = FFmpegCodec(resolve_toolchain(), timeout=settings.codec_timeout)
    info = codec.probe(input_video)
    info_line = f"{info.width}x{info.height} @ {info.framerate:.3f} fps"
    if info.duration_seconds > 0:
        info_line += f", {info.duration_seconds:.1f}s"

    if client is None:
        client = connect_inference(settings, get_model(options.model).model)

    manager = job_manager or JobManager(settings.work_dir, settings.state_dir)
    try:
        job = manager.create_or_resume(input_video, output_video, options)
        print_banner(job, info_line)
        processor = FrameProcessor(FrameEnhancer(client))
        pipeline = Pipeline(manager, codec, processor, show_progress=show_progress)
        return pipeline.run(job)
    finally:
        if job_manager is None:
            manager.close()


def job_status(job_id: str, *, settings: Optional[Settings] = None) -> JobStatus:
    settings = settings or load_settings()
    with JobManager(settings.work_dir, settings.state_dir) as manager:
        return manager.get_status(job_id)


def cancel_job(job_id: str, *, settings: Optional[Settings] = None) -> Job:
    settings = settings or load_settings()
    with JobManager(settings.work_dir, settings.state_dir) as manager:
        return manager.cancel(job_id)


def cleanup_job(job_id: str, *, settings: Optional[Settings] = None) -> None:
    settings = settings or load_settings()
    with JobManager(settings.work_dir, settings.state_dir) as manager:
        manager.cleanup(job_id)


def list_models() -> list[ModelPreset]:
    return list(ENHANCEMENT_MODELS.values())


# ── CLI ────────────────────────────────────────────────────────────────────────


def print_models() -> None:
    print("Available enhancement models:\n")
    for preset in list_models():
        print(f"  {preset.name:<10} {preset.description}")
    print()


def print_status(job_id: str, status: JobStatus) -> None:
    print(f"Job:      {job_id}")
    print(f"State:    {status.state.value}")
    print(f"Progress: {status.progress}% ({status.processed_frames}/{status.total_frames} frames)")
    if status.error:
        print(f"Error:    {status.error}")


def run_job_command(args, settings: Settings) -> int:
    if args.list_models:
        print_models()
    elif args.status:
        print_status(args.status, job_status(args.status, settings=settings))
    elif args.cancel:
        job = cancel_job(args.cancel, settings=settings)
        print(f"Job {job.id}: {job.state.value}")
    elif args.cleanup:
        cleanup_job(args.cleanup, settings=settings)
        print(f"Job {args.cleanup}: cleaned up")
    return 0


@traced
def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        validate_runtime_args(args)
        settings = load_settings(
            ollama_host=args.ollama_host,
            work_dir=args.work_dir,
            state_dir=args.state_dir,
        )
        if has_job_command(args):
            return run_job_command(args, settings)

        input_video = Path(args.input_video).expanduser().resolve()
        output_video = resolve_output_path(input_video, args.output_video)
        output_path = enhance(input_video, output_video, build_job_options(args), settings=settings)
        print(f"Enhancement complete: {output_path}")
        return 0
    except KeyboardInterrupt:
        print("Interrupted by user.", file=sys.stderr)
        return 130
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def cli_entry() -> None:
    init_tracing(load_settings().otlp_endpoint)
    try:
        code = main()
    finally:
        shutdown_tracing()
    raise SystemExit(code)


if __name__ == "__main__":
    cli_entry()
