# coursestream/transcoding.py
import logging
import math
import os
import subprocess
import time
from typing import Callable, List, Optional, Sequence

from PIL import Image

from .config import Settings
from .errors import EncodingError
from .profiles import QualityProfile
from .utils import parse_bitrate, run_tool, stderr_tail

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "segment_%03d.ts"
POSTER_NAME = "poster.jpg"
POSTER_SIZE = (320, 180)


def thumbnail_timestamps(duration: float, count: int) -> List[int]:
    """Evenly spaced, whole-second timestamps that skip the first and last instant.

    Short assets get fewer thumbnails: every timestamp is at least 1s, inside
    the asset and distinct.
    """
    if count <= 0 or duration <= 0:
        return []
    step = duration / (count + 1)
    timestamps = []
    for i in range(count):
        ts = max(1, int(math.floor(step * (i + 1))))
        if ts < duration and ts not in timestamps:
            timestamps.append(ts)
    return timestamps


class RenditionEncoder:
    """Runs ffmpeg for the per-quality HLS renditions and side artifacts.

    Failures are raised as EncodingError and never retried here; the
    orchestrator fails the whole job.
    """

    def __init__(self, settings: Settings, runner: Callable = run_tool):
        self.settings = settings
        self.runner = runner

    def _limit(self, timeout: Optional[float]) -> float:
        """Per-run timeout: the tool limit, shortened to what the job has left"""
        if timeout is None:
            return self.settings.tool_timeout
        return max(0.0, min(self.settings.tool_timeout, timeout))

    def _run(self, cmd: List[str], job_id: str, quality: Optional[str], what: str,
             timeout: Optional[float] = None):
        limit = self._limit(timeout)
        try:
            result = self.runner(cmd, timeout=limit)
        except FileNotFoundError as e:
            logger.error("❌ ffmpeg not found for job %s (%s)", job_id, what)
            raise EncodingError(f"ffmpeg not found: {self.settings.ffmpeg_path}",
                                job_id=job_id, quality=quality) from e
        except subprocess.TimeoutExpired as e:
            logger.error("❌ %s timed out for job %s quality %s", what, job_id, quality)
            raise EncodingError(f"{what} timed out after {limit:g}s",
                                job_id=job_id, quality=quality) from e

        if result.returncode != 0:
            tail = stderr_tail(result.stderr)
            logger.error("❌ %s failed for job %s quality %s (exit %s): %s",
                         what, job_id, quality, result.returncode, tail)
            message = f"{what} failed" + (f" for {quality}" if quality else "")
            raise EncodingError(f"{message}: {tail or 'exit code ' + str(result.returncode)}",
                                job_id=job_id, quality=quality, stderr=result.stderr)
        return result

    def build_quality_command(self, input_path: str, profile: QualityProfile, quality_dir: str) -> List[str]:
        w, h = profile.width, profile.height
        return [
            self.settings.ffmpeg_path, "-y", "-i", input_path,
            "-c:v", "libx264",
            "-profile:v", profile.profile,
            "-preset", self.settings.x264_preset,
            "-b:v", profile.video_bitrate,
            "-maxrate", profile.video_bitrate,
            "-bufsize", f"{2 * parse_bitrate(profile.video_bitrate) // 1000}k",
            "-vf", f"scale={w}:{h}:force_original_aspect_ratio=decrease,pad={w}:{h}:(ow-iw)/2:(oh-ih)/2",
            "-r", str(profile.fps),
            # fixed 2 second GOP so every segment boundary is a keyframe
            "-g", str(profile.keyframe_interval),
            "-keyint_min", str(profile.fps),
            "-sc_threshold", "0",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", profile.audio_bitrate,
            "-ac", "2",
            "-f", "hls",
            "-hls_time", str(self.settings.segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_flags", "independent_segments",
            "-hls_segment_filename", os.path.join(quality_dir, SEGMENT_PATTERN),
            os.path.join(quality_dir, PLAYLIST_NAME),
        ]

    def encode_quality(self, job_id: str, input_path: str, profile: QualityProfile, output_dir: str,
                       timeout: Optional[float] = None) -> str:
        """Encode one rendition, returns the path of its HLS playlist"""
        quality_dir = os.path.join(output_dir, profile.label)
        os.makedirs(quality_dir, exist_ok=True)
        logger.info("Encoding %s for job %s", profile.label, job_id)

        self._run(self.build_quality_command(input_path, profile, quality_dir),
                  job_id, profile.label, "Transcoding", timeout=timeout)

        playlist = os.path.join(quality_dir, PLAYLIST_NAME)
        if not os.path.exists(playlist):
            raise EncodingError(f"Transcoding produced no playlist for {profile.label}",
                                job_id=job_id, quality=profile.label)
        return playlist

    def generate_thumbnails(self, job_id: str, input_path: str, duration: float, output_dir: str,
                            count: Optional[int] = None,
                            timestamps: Optional[Sequence[float]] = None,
                            timeout: Optional[float] = None) -> List[str]:
        """Extract one frame per timestamp plus a poster.

        `timeout` is a budget for the whole step, shared by every extraction.
        """
        if timestamps is None:
            timestamps = thumbnail_timestamps(duration, count or self.settings.thumbnail_count)
        thumbs_dir = os.path.join(output_dir, "thumbnails")
        os.makedirs(thumbs_dir, exist_ok=True)

        started = time.monotonic()
        paths = []
        for i, ts in enumerate(timestamps):
            out = os.path.join(thumbs_dir, f"thumb_{i:02d}_{ts:g}s.jpg")
            cmd = [self.settings.ffmpeg_path, "-y", "-ss", f"{ts:g}", "-i", input_path,
                   "-frames:v", "1", "-vf", f"scale={self.settings.thumbnail_width}:-2",
                   "-q:v", "2", out]
            left = None if timeout is None else timeout - (time.monotonic() - started)
            self._run(cmd, job_id, None, "Thumbnail extraction", timeout=left)
            paths.append(out)

        if paths:
            self.make_poster(paths[0], os.path.join(output_dir, POSTER_NAME))
        return paths

    def make_poster(self, source: str, poster_path: str) -> str:
        img = Image.open(source)
        img.thumbnail(POSTER_SIZE)
        img.convert("RGB").save(poster_path, "JPEG")
        return poster_path

    def extract_audio(self, job_id: str, input_path: str, output_dir: str,
                      timeout: Optional[float] = None) -> str:
        out = os.path.join(output_dir, "audio.m4a")
        cmd = [self.settings.ffmpeg_path, "-y", "-i", input_path, "-vn",
               "-c:a", "aac", "-b:a", self.settings.audio_bitrate, out]
        self._run(cmd, job_id, None, "Audio extraction", timeout=timeout)
        return out
