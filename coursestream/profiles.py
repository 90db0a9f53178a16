# coursestream/profiles.py
"""Fixed quality ladder used for renditions and quality recommendations."""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .utils import parse_bitrate


@dataclass(frozen=True)
class QualityProfile:
    label: str
    width: int
    height: int
    video_bitrate: str
    audio_bitrate: str
    fps: int
    profile: str  # baseline | main | high

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def bandwidth(self) -> int:
        """Approximate stream bandwidth in bits/s (video + audio)"""
        return parse_bitrate(self.video_bitrate) + parse_bitrate(self.audio_bitrate)

    @property
    def keyframe_interval(self) -> int:
        # one independent seek point every 2 seconds
        return self.fps * 2


QUALITY_LADDER: Sequence[QualityProfile] = (
    QualityProfile("240p", 426, 240, "400k", "64k", 24, "baseline"),
    QualityProfile("360p", 640, 360, "800k", "96k", 30, "main"),
    QualityProfile("480p", 854, 480, "1200k", "128k", 30, "main"),
    QualityProfile("720p", 1280, 720, "2500k", "192k", 30, "high"),
    QualityProfile("1080p", 1920, 1080, "5000k", "256k", 30, "high"),
)

QUALITY_PROFILES: Dict[str, QualityProfile] = {p.label: p for p in QUALITY_LADDER}
QUALITY_LABELS: List[str] = [p.label for p in QUALITY_LADDER]

# always offered so slow connections have something to play
MANDATORY_QUALITIES = ("360p", "240p")


def is_quality(label: Optional[str]) -> bool:
    return label in QUALITY_PROFILES


def get_profile(label: str) -> QualityProfile:
    try:
        return QUALITY_PROFILES[label]
    except KeyError:
        raise KeyError(f"Unknown quality profile: {label}")


def sort_by_bandwidth(labels: Iterable[str]) -> List[str]:
    return sorted(set(labels), key=lambda label: get_profile(label).bandwidth)


def default_qualities(width: int, height: int) -> List[str]:
    """Ladder for a source that named no qualities, highest first.

    Never upscales: a tier is included only when the source height reaches
    the tier's height, so 4:3 and portrait sources keep their tiers.
    """
    qualities = []
    for profile in reversed(QUALITY_LADDER):
        if profile.label in MANDATORY_QUALITIES:
            continue
        if height >= profile.height:
            qualities.append(profile.label)
    qualities.extend(MANDATORY_QUALITIES)
    return qualities


def next_lower(label: str, ladder: Sequence[str] = QUALITY_LABELS) -> Optional[str]:
    """Closest tier in `ladder` below `label`, by bandwidth"""
    current = get_profile(label).bandwidth
    lower = [q for q in ladder if get_profile(q).bandwidth < current]
    return max(lower, key=lambda q: get_profile(q).bandwidth) if lower else None


def next_higher(label: str, ladder: Sequence[str] = QUALITY_LABELS) -> Optional[str]:
    """Closest tier in `ladder` above `label`, by bandwidth"""
    current = get_profile(label).bandwidth
    higher = [q for q in ladder if get_profile(q).bandwidth > current]
    return min(higher, key=lambda q: get_profile(q).bandwidth) if higher else None
