"""CLI: argument parsing, option normalization, and runtime validation."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from config import (
    BATCH_SIZE_RANGE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_BLEND_FACTOR,
    DEFAULT_FPS,
    DEFAULT_MODEL,
    DEFAULT_STRENGTH,
    ENHANCEMENT_MODELS,
    FPS_RANGE,
    clamp,
    get_model,
)
from job_manager import JobOptions

# ── Functions ──────────────────────────────────────────────────────────────────


def resolve_output_path(input_video: Path, output_arg: Optional[str]) -> Path:
    if output_arg:
        return Path(output_arg).expanduser().resolve()
    return (input_video.parent / f"{input_video.stem}_enhanced.mp4").resolve()


def has_job_command(args: argparse.Namespace) -> bool:
    return bool(args.list_models or args.status or args.cancel or args.cleanup)


def validate_runtime_args(args: argparse.Namespace) -> None:
    if has_job_command(args):
        return
    if not args.input_video:
        raise ValueError("Missing input and/or output file arguments.")


def build_job_options(args: argparse.Namespace) -> JobOptions:
    """Normalize parsed flags into job options, clamping out-of-range values."""
    return JobOptions(
        model=get_model(args.model).name,
        fps=int(clamp(args.fps, *FPS_RANGE)),
        batch_size=int(clamp(args.batch_size, *BATCH_SIZE_RANGE)),
        strength=float(clamp(args.strength, 0.0, 1.0)),
        temporal_smoothing=args.temporal,
        blend_factor=float(clamp(args.blend, 0.0, 1.0)),
        clean=args.clean,
        resume=args.resume,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="enhance-video",
        description="AI-powered video enhancement with temporal smoothing",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("input_video", nargs="?", type=str, help="Input video file path")
    parser.add_argument(
        "output_video",
        nargs="?",
        type=str,
        default=None,
        help="Output video path (default: <input>_enhanced.mp4)",
    )
    parser.add_argument(
        "-m",
        "--model",
        type=str,
        default=DEFAULT_MODEL,
        help=f"Enhancement model ({', '.join(ENHANCEMENT_MODELS)})",
    )
    parser.add_argument("-f", "--fps", type=int, default=DEFAULT_FPS, help="Output framerate")
    parser.add_argument(
        "-b",
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help="Frames per inference batch (1-32)",
    )
    parser.add_argument(
        "-s",
        "--strength",
        type=float,
        default=DEFAULT_STRENGTH,
        help="Enhancement strength (0.0-1.0)",
    )
    parser.add_argument(
        "--temporal",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Temporal consistency smoothing",
    )
    parser.add_argument(
        "--blend",
        type=float,
        default=DEFAULT_BLEND_FACTOR,
        help="Base temporal blend factor (0.0-1.0)",
    )
    parser.add_argument(
        "--clean",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Remove working files after completion",
    )
    parser.add_argument(
        "--resume",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Resume a previous job for the same input/output pair",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--work-dir",
        type=str,
        default=None,
        help="Directory for extracted and enhanced frames (env: VIDEO_ENHANCER_WORK_DIR)",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        default=None,
        help="Directory for persisted job records (env: VIDEO_ENHANCER_STATE_DIR)",
    )
    parser.add_argument(
        "--ollama-host",
        type=str,
        default=None,
        help="Inference service URL (env: OLLAMA_HOST)",
    )
    parser.add_argument("--list-models", action="store_true", help="List available enhancement models")
    parser.add_argument("--status", type=str, default=None, metavar="JOB_ID", help="Check status of a job")
    parser.add_argument("--cancel", type=str, default=None, metavar="JOB_ID", help="Cancel a running job")
    parser.add_argument(
        "--cleanup",
        type=str,
        default=None,
        metavar="JOB_ID",
        help="Delete a job's working files and record",
    )

    return parser.parse_args(argv)
