# coursestream/domain.py
"""Records shared by the orchestrator, the session manager and the stores.

All timestamps are epoch seconds taken from the owning service's clock.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from .errors import ValidationError
from .profiles import default_qualities, is_quality


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class PlaybackEventType(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    ENDED = "ended"
    ERROR = "error"
    QUALITY_CHANGE = "quality_change"
    BUFFER_START = "buffer_start"
    BUFFER_END = "buffer_end"
    FULLSCREEN_ENTER = "fullscreen_enter"
    FULLSCREEN_EXIT = "fullscreen_exit"
    VOLUME_CHANGE = "volume_change"
    SPEED_CHANGE = "speed_change"
    SUBTITLE_CHANGE = "subtitle_change"
    CHAPTER_CHANGE = "chapter_change"
    # recorded by the server for playing heartbeats, never sent by clients
    HEARTBEAT = "heartbeat"


CLIENT_EVENT_TYPES = [t.value for t in PlaybackEventType if t is not PlaybackEventType.HEARTBEAT]


class HeartbeatStatus(str, Enum):
    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"


class Chapter(BaseModel):
    id: int
    title: str
    start_time: float
    end_time: float


class Subtitle(BaseModel):
    language: str
    label: str
    url: Optional[str] = None
    default: bool = False


class VideoMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: float
    width: int
    height: int
    fps: float
    bitrate: int = 0
    codec: str
    audio_codec: Optional[str] = None
    format_name: Optional[str] = None
    size: int = 0
    chapters: List[Chapter] = Field(default_factory=list)
    subtitles: List[Subtitle] = Field(default_factory=list)
    thumbnail: Optional[str] = None

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


class ProcessingOptions(BaseModel):
    qualities: Optional[List[str]] = None
    generate_thumbnails: bool = True
    extract_audio: bool = False
    enable_drm: bool = True


class ProcessingJob(BaseModel):
    job_id: str
    user_id: str
    course_id: Optional[str] = None
    original_filename: str
    original_filesize: int
    mime_type: Optional[str] = None
    input_path: str
    output_path: Optional[str] = None
    manifest_url: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    current_step: str = "queued"
    qualities: List[str]
    metadata: VideoMetadata
    options: ProcessingOptions
    error: Optional[str] = None
    created_at: float
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    estimated_duration: float = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ManifestEntry(BaseModel):
    quality: str
    bandwidth: int
    resolution: str
    url: str


class ThumbnailRef(BaseModel):
    time: float
    url: str


class StreamingManifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: str
    format: str = "hls"
    master_url: str
    base_url: str
    entries: List[ManifestEntry]
    duration: float
    thumbnails: List[ThumbnailRef] = Field(default_factory=list)
    poster_url: Optional[str] = None
    encrypted: bool = False
    segment_duration: int

    @property
    def qualities(self) -> List[str]:
        return [entry.quality for entry in self.entries]


class PlaybackEvent(BaseModel):
    type: PlaybackEventType
    timestamp: float
    position: float = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StreamingSession(BaseModel):
    session_id: str
    user_id: str
    asset_id: str
    course_id: Optional[str] = None
    start_time: float
    last_activity: float
    current_position: float = 0
    quality: str
    playback_rate: float = 1.0
    volume: float = 1.0
    is_fullscreen: bool = False
    watch_time: float = 0
    completion_percentage: float = 0
    completed: bool = False
    completed_at: Optional[float] = None
    ended: bool = False
    ended_at: Optional[float] = None
    events: List[PlaybackEvent] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)


class HeartbeatResult(BaseModel):
    status: HeartbeatStatus
    recommended_quality: Optional[str] = None
    messages: List[str] = Field(default_factory=list)
    analytics: Optional[Dict[str, Any]] = None


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    metadata: Optional[VideoMetadata] = None


def resolve_processing_options(raw: Union[None, Dict[str, Any], ProcessingOptions],
                               metadata: VideoMetadata) -> ProcessingOptions:
    """Fill every option once, before the job exists.

    Without explicit qualities the ladder is derived from the source
    resolution. Unknown labels are rejected, duplicates dropped.
    """
    if raw is None:
        options = ProcessingOptions()
    elif isinstance(raw, ProcessingOptions):
        options = raw.model_copy()
    else:
        try:
            options = ProcessingOptions.model_validate(raw)
        except SchemaError as e:
            raise ValidationError([err["msg"] for err in e.errors()], message="Invalid processing options")

    if not options.qualities:
        qualities = default_qualities(metadata.width, metadata.height)
    else:
        unknown = [q for q in options.qualities if not is_quality(q)]
        if unknown:
            raise ValidationError([f"Unsupported quality: {q}" for q in unknown],
                                  message="Invalid processing options")
        qualities = list(dict.fromkeys(options.qualities))

    return options.model_copy(update={"qualities": qualities})
