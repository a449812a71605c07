"""ffmpeg/ffprobe process helpers."""
from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from loguru import logger

from .errors import CompositorError


@dataclass
class StreamInfo:
    path: Path
    width: int
    height: int
    duration: float
    fps: float


class FFmpegError(CompositorError):
    pass


class PipelineExecutionError(FFmpegError):
    """The video engine exited with a failure; ``stderr`` holds its diagnostics."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "", cmd: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
        self.cmd = list(cmd)


def run_command(cmd: Sequence[str], *, check: bool = True, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run a subprocess command logging the invocation."""

    logger.debug("Running command: {}", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise PipelineExecutionError(f"Executable not found: {cmd[0]}", cmd=cmd) from exc
    except subprocess.TimeoutExpired as exc:
        stderr = exc.stderr.decode(errors="replace") if isinstance(exc.stderr, bytes) else (exc.stderr or "")
        raise PipelineExecutionError(f"Command timed out after {timeout}s: {' '.join(cmd)}", stderr=stderr, cmd=cmd) from exc
    if check and result.returncode != 0:
        raise PipelineExecutionError(
            f"Command failed with code {result.returncode}: {' '.join(cmd)}\n{result.stderr}",
            returncode=result.returncode,
            stderr=result.stderr or "",
            cmd=cmd,
        )
    if result.stderr:
        logger.debug(result.stderr.strip())
    return result


def ffprobe_json(path: Path, ffprobe: str = "ffprobe") -> Dict[str, Any]:
    cmd = [
        ffprobe,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    result = run_command(cmd)
    if result.stdout:
        return json.loads(result.stdout)
    raise FFmpegError(f"ffprobe produced no output for {path}")


def _parse_fraction(value: str) -> Fraction:
    num, _, den = value.partition("/")
    if den:
        if int(den) == 0:
            return Fraction(0)
        return Fraction(int(num), int(den))
    return Fraction(float(value)).limit_denominator()


def stream_info(path: Path, ffprobe: str = "ffprobe") -> StreamInfo:
    """Size, duration and rate of the first video stream (stills included)."""

    data = ffprobe_json(path, ffprobe)
    streams = [s for s in data.get("streams", []) if s.get("codec_type") == "video"]
    if not streams:
        raise FFmpegError(f"No video streams found in {path}")
    stream = streams[0]
    duration = float(stream.get("duration") or data.get("format", {}).get("duration") or 0.0)
    fps = float(_parse_fraction(stream.get("r_frame_rate", "0/0")))
    if fps <= 0:
        fps = float(_parse_fraction(stream.get("avg_frame_rate", "0/0")))
    return StreamInfo(
        path=path,
        width=int(stream["width"]),
        height=int(stream["height"]),
        duration=duration,
        fps=fps,
    )


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
