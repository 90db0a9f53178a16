# coursestream/schemas.py
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

from .domain import CLIENT_EVENT_TYPES, ProcessingJob, PlaybackEventType
from .profiles import QUALITY_LABELS, is_quality
from .utils import isoformat


def _check_quality(value: str) -> str:
    if not is_quality(value):
        raise ValueError(f"quality must be one of {', '.join(QUALITY_LABELS)}")
    return value


QualityLabel = Annotated[str, AfterValidator(_check_quality)]


class JobCreateResponse(BaseModel):
    job_id: str
    status: str
    progress: int
    estimated_duration: float
    qualities: List[str]


class JobStatus(BaseModel):
    job_id: str
    status: str
    progress: int
    current_step: str
    original_filename: str
    course_id: Optional[str] = None
    qualities: List[str]
    estimated_duration: float
    manifest_url: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any]
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_job(cls, job: ProcessingJob) -> "JobStatus":
        return cls(
            job_id=job.job_id,
            status=job.status.value,
            progress=job.progress,
            current_step=job.current_step,
            original_filename=job.original_filename,
            course_id=job.course_id,
            qualities=job.qualities,
            estimated_duration=job.estimated_duration,
            manifest_url=job.manifest_url,
            error=job.error,
            metadata=job.metadata.model_dump(mode="json"),
            created_at=isoformat(job.created_at),
            started_at=isoformat(job.started_at),
            completed_at=isoformat(job.completed_at),
        )


class JobListResponse(BaseModel):
    jobs: List[JobStatus]
    count: int


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool


class StatisticsResponse(BaseModel):
    statistics: Dict[str, int]
    total_jobs: int


class NetworkInfo(BaseModel):
    effective_type: Optional[str] = None
    downlink: Optional[float] = None
    rtt: Optional[float] = None
    save_data: Optional[bool] = None


class TimeRange(BaseModel):
    start: float
    end: float


class PlayerState(BaseModel):
    buffered_ranges: Optional[List[TimeRange]] = None
    played_ranges: Optional[List[TimeRange]] = None
    seekable_ranges: Optional[List[TimeRange]] = None


class StreamRequest(BaseModel):
    asset_id: str = Field(min_length=1)
    quality: Optional[QualityLabel] = None
    course_id: Optional[str] = None
    device_type: Optional[str] = None
    network_type: Optional[str] = None


class ThumbnailInfo(BaseModel):
    time: float
    url: str


class StreamResponse(BaseModel):
    session_id: str
    asset_id: str
    manifest_url: str
    format: str
    qualities: List[str]
    quality: str
    duration: float
    thumbnails: List[ThumbnailInfo]
    poster_url: Optional[str] = None
    encrypted: bool
    segment_duration: int
    expires_in: int


class SessionUpdateRequest(BaseModel):
    current_position: Optional[float] = Field(default=None, ge=0)
    quality: Optional[QualityLabel] = None
    playback_rate: Optional[float] = Field(default=None, ge=0.25, le=2.0)
    volume: Optional[float] = Field(default=None, ge=0, le=1)
    is_fullscreen: Optional[bool] = None


class SessionInfo(BaseModel):
    session_id: str
    user_id: str
    asset_id: str
    course_id: Optional[str] = None
    current_position: float
    quality: str
    playback_rate: float
    volume: float
    is_fullscreen: bool
    watch_time: float
    completion_percentage: float
    completed: bool
    ended: bool
    start_time: Optional[str] = None
    last_activity: Optional[str] = None


class HeartbeatRequest(BaseModel):
    session_id: str = Field(min_length=1)
    current_position: float = Field(ge=0)
    buffer_health: float = Field(ge=0, le=100)
    quality: QualityLabel
    playback_rate: float = Field(default=1.0, ge=0.25, le=2.0)
    volume: float = Field(default=1.0, ge=0, le=1)
    is_playing: bool
    is_fullscreen: bool = False
    network_info: Optional[NetworkInfo] = None
    player_state: Optional[PlayerState] = None


class Recommendations(BaseModel):
    quality: Optional[str] = None
    messages: List[str] = []


class HeartbeatResponse(BaseModel):
    status: str
    session_id: str
    server_time: float
    recommendations: Recommendations
    analytics: Optional[Dict[str, Any]] = None


class AnalyticsRequest(BaseModel):
    session_id: str = Field(min_length=1)
    event_type: PlaybackEventType
    position: float = Field(default=0, ge=0)
    metadata: Dict[str, Any] = {}

    @field_validator("event_type")
    @classmethod
    def client_event(cls, value: PlaybackEventType) -> PlaybackEventType:
        if value.value not in CLIENT_EVENT_TYPES:
            raise ValueError(f"event_type must be one of {', '.join(CLIENT_EVENT_TYPES)}")
        return value


class AnalyticsResponse(BaseModel):
    session_id: str
    tracked: bool


class VideoInfo(BaseModel):
    asset_id: str
    owner: str
    course_id: Optional[str] = None
    filename: str
    manifest_url: str
    duration: float
    qualities: List[str]
    published_at: Optional[datetime] = None


class WatchHistoryEntry(BaseModel):
    session_id: str
    asset_id: str
    course_id: Optional[str] = None
    watch_time: float
    completion_percentage: float
    completed: bool
    completed_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class WatchHistoryResponse(BaseModel):
    user_id: str
    entries: List[WatchHistoryEntry]
    total: int
