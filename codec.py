"""Codec: ffmpeg-backed frame extraction, video assembly, and probing."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from config import CODEC_TIMEOUT_SECONDS
from errors import AssemblyFailed, ExtractionFailed, InvalidResponse, InvalidVideoFormat
from toolchain import Toolchain, run_subprocess

DEFAULT_PROBE_FPS = 30.0
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080

# Zero-padded so lexicographic filename order is temporal order.
FRAME_PATTERN = "frame_%08d.png"
FRAME_GLOB = "frame_*.png"


@dataclass(frozen=True)
class VideoInfo:
    framerate: float
    width: int
    height: int
    duration_seconds: float


def parse_framerate(value: str) -> float:
    """Parse ffprobe framerate strings like 30000/1001 safely."""
    if not value:
        return DEFAULT_PROBE_FPS

    try:
        if "/" in value:
            num, den = value.split("/", maxsplit=1)
            denominator = float(den)
            if denominator == 0:
                return DEFAULT_PROBE_FPS
            framerate = float(num) / denominator
        else:
            framerate = float(value)
    except (TypeError, ValueError):
        return DEFAULT_PROBE_FPS

    if framerate <= 0 or framerate > 240:
        return DEFAULT_PROBE_FPS
    return framerate


def _stderr_tail(result: subprocess.CompletedProcess[str], limit: int = 500) -> str:
    stderr = (result.stderr or "").strip()
    return stderr[-limit:] if stderr else f"exit code {result.returncode}"


class FFmpegCodec:
    """Video codec tool: turns videos into numbered frames and back."""

    def __init__(self, toolchain: Toolchain, *, timeout: float = CODEC_TIMEOUT_SECONDS) -> None:
        self.toolchain = toolchain
        self.timeout = timeout

    def probe(self, input_video: Path) -> VideoInfo:
        """Read metadata with ffprobe and return parsed info."""
        cmd = [
            self.toolchain.ffprobe,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            "-show_format",
            str(input_video),
        ]
        result = run_subprocess(cmd, check=False, capture_output=True, timeout=self.timeout)
        if result.returncode != 0:
            raise InvalidVideoFormat(f"{input_video}: {_stderr_tail(result)}")

        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise InvalidResponse(f"Failed to parse ffprobe output: {exc}") from exc

        video_stream = None
        for stream in payload.get("streams", []):
            if stream.get("codec_type") == "video":
                video_stream = stream
                break

        if video_stream is None:
            raise InvalidVideoFormat(f"No video stream found in {input_video}")

        framerate = parse_framerate(
            video_stream.get("avg_frame_rate") or video_stream.get("r_frame_rate", "")
        )
        duration_raw = (
            video_stream.get("duration")
            or payload.get("format", {}).get("duration")
            or "0"
        )
        try:
            duration_seconds = max(float(duration_raw), 0.0)
        except (TypeError, ValueError):
            duration_seconds = 0.0

        return VideoInfo(
            framerate=framerate,
            width=int(video_stream.get("width", DEFAULT_WIDTH)),
            height=int(video_stream.get("height", DEFAULT_HEIGHT)),
            duration_seconds=duration_seconds,
        )

    def extract(self, input_video: Path, frames_dir: Path, fps: int) -> int:
        """Extract frames at `fps` into PNG files and return how many were written."""
        frames_dir.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.toolchain.ffmpeg,
            "-i",
            str(input_video),
            "-vf",
            f"fps={fps}",
            "-start_number",
            "0",
            str(frames_dir / FRAME_PATTERN),
            "-y",
            "-hide_banner",
            "-loglevel",
            "warning",
        ]
        try:
            result = run_subprocess(cmd, check=False, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise ExtractionFailed(f"ffmpeg timed out after {exc.timeout:.0f}s") from exc
        except OSError as exc:
            raise ExtractionFailed(str(exc)) from exc
        if result.returncode != 0:
            raise ExtractionFailed(_stderr_tail(result))

        return len(list(frames_dir.glob(FRAME_GLOB)))

    def assemble(self, frames_dir: Path, output_video: Path, fps: int) -> Path:
        """Encode the numbered frames in `frames_dir` into `output_video`."""
        if not any(frames_dir.glob(FRAME_GLOB)):
            raise AssemblyFailed(f"No frames found in {frames_dir}")

        output_video.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.toolchain.ffmpeg,
            "-framerate",
            str(fps),
            "-start_number",
            "0",
            "-i",
            str(frames_dir / FRAME_PATTERN),
            "-c:v",
            "libx264",
            "-preset",
            "medium",
            "-crf",
            "18",
            "-pix_fmt",
            "yuv420p",
            "-movflags",
            "+faststart",
            str(output_video),
            "-y",
            "-hide_banner",
            "-loglevel",
            "warning",
        ]
        try:
            result = run_subprocess(cmd, check=False, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise AssemblyFailed(f"ffmpeg timed out after {exc.timeout:.0f}s") from exc
        except OSError as exc:
            raise AssemblyFailed(str(exc)) from exc
        if result.returncode != 0:
            raise AssemblyFailed(_stderr_tail(result))
        return output_video
