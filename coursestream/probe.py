# coursestream/probe.py
"""ffprobe-backed metadata extraction and upload acceptance checks."""
import json
import logging
import math
import os
import subprocess
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, List, Optional

from .config import Settings
from .domain import Chapter, ValidationResult, VideoMetadata
from .errors import ProbeError
from .utils import run_tool, stderr_tail

logger = logging.getLogger(__name__)

# leading bytes of executables and scripts that have no business in a video upload
UNSAFE_SIGNATURES = (
    b"MZ",
    b"\x7fELF",
    b"\xca\xfe\xba\xbe",
    b"\xcf\xfa\xed\xfe",
    b"#!",
    b"<?php",
    b"<script",
    b"<html",
)


@dataclass
class UploadInfo:
    """What the HTTP layer knows about an upload before it is probed"""
    filename: str
    content_type: Optional[str]
    size: int


def format_duration(seconds: float) -> str:
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "0:00"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value, i = float(size), 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def default_safety_scan(path: str) -> List[str]:
    """Content-safety hook: flag files that start like executables or scripts"""
    with open(path, "rb") as f:
        head = f.read(16)
    if head.lower().startswith(tuple(sig.lower() for sig in UNSAFE_SIGNATURES)):
        return ["File failed content safety scan"]
    return []


def _parse_rate(value: Optional[str]) -> float:
    if not value or value in ("0/0", "N/A"):
        return 0.0
    try:
        return float(Fraction(value))
    except (ValueError, ZeroDivisionError):
        return 0.0


def _to_int(value, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


class MediaInspector:

    def __init__(self, settings: Settings, runner: Callable = run_tool,
                 safety_scan: Callable[[str], List[str]] = default_safety_scan):
        self.settings = settings
        self.runner = runner
        self.safety_scan = safety_scan

    def extract_metadata(self, path: str) -> VideoMetadata:
        cmd = [self.settings.ffprobe_path, "-v", "error", "-print_format", "json",
               "-show_format", "-show_streams", "-show_chapters", path]
        try:
            result = self.runner(cmd, timeout=self.settings.probe_timeout)
        except FileNotFoundError as e:
            raise ProbeError(f"ffprobe not found: {self.settings.ffprobe_path}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {self.settings.probe_timeout}s") from e

        if result.returncode != 0:
            logger.warning("ffprobe failed for %s: %s", path, stderr_tail(result.stderr))
            raise ProbeError("Unable to read video file", details=stderr_tail(result.stderr))

        try:
            probe = json.loads(result.stdout or "")
        except ValueError as e:
            raise ProbeError("ffprobe returned unreadable output") from e

        streams = probe.get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video is None:
            raise ProbeError("No video stream found")
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        fmt = probe.get("format", {})

        duration = float(fmt.get("duration") or video.get("duration") or 0)
        chapters = [
            Chapter(
                id=i,
                title=(c.get("tags") or {}).get("title", f"Chapter {i + 1}"),
                start_time=float(c.get("start_time", 0)),
                end_time=float(c.get("end_time", 0)),
            )
            for i, c in enumerate(probe.get("chapters", []))
        ]

        return VideoMetadata(
            duration=duration,
            width=_to_int(video.get("width")),
            height=_to_int(video.get("height")),
            fps=round(_parse_rate(video.get("r_frame_rate") or video.get("avg_frame_rate")), 3),
            bitrate=_to_int(fmt.get("bit_rate") or video.get("bit_rate")),
            codec=video.get("codec_name", "unknown"),
            audio_codec=audio.get("codec_name") if audio else None,
            format_name=fmt.get("format_name"),
            size=_to_int(fmt.get("size")) or (os.path.getsize(path) if os.path.exists(path) else 0),
            chapters=chapters,
        )

    def check_upload(self, upload: UploadInfo, path: str) -> List[str]:
        """Structural checks that need no probe"""
        s = self.settings
        errors = []
        if upload.size > s.max_file_size:
            errors.append(f"File size ({format_file_size(upload.size)}) exceeds maximum allowed "
                          f"({format_file_size(s.max_file_size)})")
        if upload.size <= 0:
            errors.append("File is empty")
        if upload.content_type not in s.allowed_mime_types:
            errors.append(f"Video type ({upload.content_type}) is not allowed. "
                          f"Allowed types: {', '.join(s.allowed_mime_types)}")
        extension = os.path.splitext(upload.filename or "")[1].lstrip(".").lower()
        if extension not in s.allowed_extensions:
            errors.append(f"File extension (.{extension}) is not allowed")
        errors.extend(self.safety_scan(path))
        return errors

    def check_metadata(self, metadata: VideoMetadata) -> List[str]:
        s = self.settings
        errors = []
        if metadata.codec.lower() not in s.supported_video_codecs:
            errors.append(f"Video codec ({metadata.codec}) is not supported")

        if metadata.duration <= 0 or not math.isfinite(metadata.duration):
            errors.append("Invalid video duration")
        elif metadata.duration > s.max_duration:
            errors.append(f"Video duration ({format_duration(metadata.duration)}) exceeds maximum "
                          f"allowed ({format_duration(s.max_duration)})")
        elif metadata.duration < s.min_duration:
            errors.append(f"Video duration ({format_duration(metadata.duration)}) is below minimum "
                          f"required ({format_duration(s.min_duration)})")

        if metadata.width <= 0 or metadata.height <= 0:
            errors.append("Invalid video resolution")
            return errors

        if metadata.width > s.max_width:
            errors.append(f"Video width ({metadata.width}px) exceeds maximum allowed ({s.max_width}px)")
        if metadata.height > s.max_height:
            errors.append(f"Video height ({metadata.height}px) exceeds maximum allowed ({s.max_height}px)")
        if min(metadata.width, metadata.height) < s.min_dimension:
            errors.append(f"Video resolution ({metadata.width}x{metadata.height}) is below minimum "
                          f"required ({s.min_dimension}p)")

        ratio = metadata.aspect_ratio
        if ratio < s.min_aspect_ratio or ratio > s.max_aspect_ratio:
            errors.append(f"Video aspect ratio ({ratio:.2f}) is outside the allowed range "
                          f"({s.min_aspect_ratio}-{s.max_aspect_ratio})")
        return errors

    def validate(self, upload: UploadInfo, path: str) -> ValidationResult:
        """Aggregate every violation; raises ProbeError only for I/O-level failures"""
        errors = self.check_upload(upload, path)
        if errors:
            # a rejected container is not worth handing to ffprobe
            return ValidationResult(is_valid=False, errors=errors)

        metadata = self.extract_metadata(path)
        errors = self.check_metadata(metadata)
        return ValidationResult(is_valid=not errors, errors=errors, metadata=metadata)