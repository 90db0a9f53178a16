# coursestream/config.py
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

GB = 1024 * 1024 * 1024


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    """Deployment configuration.

    Every value is read from the environment with a default; keyword
    overrides win over both (used by tests and by the SSM loader).
    """

    def __init__(self, **overrides):
        # Storage and paths
        self.data_dir = os.getenv("DATA_DIR", "./data")
        self.public_dir = os.getenv("PUBLIC_DIR", os.path.join(self.data_dir, "public"))
        self.cdn_base_url = os.getenv("CDN_BASE_URL", "http://localhost:8000/media").rstrip("/")
        self.storage_backend = os.getenv("STORAGE_BACKEND", "local")  # local | s3
        self.store_backend = os.getenv("STORE_BACKEND", "memory")  # memory | dynamodb
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./coursestream.db")

        # AWS
        self.aws_region = os.getenv("AWS_REGION", "ap-southeast-2")
        self.use_ssm = _env_bool("USE_SSM", False)
        self.ssm_prefix = os.getenv("SSM_PREFIX", "/coursestream")
        self.s3_bucket = os.getenv("S3_BUCKET_NAME", "coursestream-video-streams")
        self.s3_transcoded_prefix = os.getenv("S3_TRANSCODED_PREFIX", "transcoded/")
        self.dynamodb_table = os.getenv("DYNAMODB_TABLE_NAME", "coursestream-state")

        # Upload acceptance
        self.max_file_size = int(os.getenv("MAX_FILE_SIZE", str(5 * GB)))
        self.allowed_mime_types = _env_list(
            "ALLOWED_MIME_TYPES",
            "video/mp4,video/webm,video/mov,video/quicktime,video/avi,video/x-msvideo,"
            "video/mkv,video/x-matroska,video/wmv,video/x-ms-wmv",
        )
        self.allowed_extensions = _env_list("ALLOWED_EXTENSIONS", "mp4,webm,mov,avi,mkv,wmv")
        self.supported_video_codecs = _env_list("SUPPORTED_VIDEO_CODECS", "h264,hevc,vp8,vp9,av1")
        self.min_duration = float(os.getenv("MIN_DURATION", "1"))
        self.max_duration = float(os.getenv("MAX_DURATION", str(4 * 60 * 60)))
        self.min_dimension = int(os.getenv("MIN_DIMENSION", "240"))
        self.max_width = int(os.getenv("MAX_WIDTH", "3840"))
        self.max_height = int(os.getenv("MAX_HEIGHT", "2160"))
        self.min_aspect_ratio = float(os.getenv("MIN_ASPECT_RATIO", "0.5"))
        self.max_aspect_ratio = float(os.getenv("MAX_ASPECT_RATIO", "2.5"))
        self.upload_roles = _env_list("UPLOAD_ROLES", "instructor,admin")

        # Processing
        self.max_concurrent_jobs = int(os.getenv("MAX_CONCURRENT_JOBS", "5"))
        self.max_active_jobs_per_user = int(os.getenv("MAX_ACTIVE_JOBS_PER_USER", "3"))
        self.processing_timeout = int(os.getenv("PROCESSING_TIMEOUT", "3600"))
        self.tool_timeout = int(os.getenv("TOOL_TIMEOUT", "3600"))
        self.probe_timeout = int(os.getenv("PROBE_TIMEOUT", "30"))
        self.job_retention_seconds = int(os.getenv("JOB_RETENTION_SECONDS", str(365 * 24 * 60 * 60)))
        self.manifest_retention_seconds = int(
            os.getenv("MANIFEST_RETENTION_SECONDS", str(365 * 24 * 60 * 60)))
        self.scheduler_poll_interval = float(os.getenv("SCHEDULER_POLL_INTERVAL", "5"))

        # Encoding
        self.ffmpeg_path = os.getenv("FFMPEG_PATH", "ffmpeg")
        self.ffprobe_path = os.getenv("FFPROBE_PATH", "ffprobe")
        self.x264_preset = os.getenv("X264_PRESET", "medium")
        self.segment_duration = int(os.getenv("HLS_SEGMENT_DURATION", "6"))
        self.thumbnail_count = int(os.getenv("THUMBNAIL_COUNT", "10"))
        self.thumbnail_width = int(os.getenv("THUMBNAIL_WIDTH", "320"))
        self.audio_bitrate = os.getenv("AUDIO_EXTRACT_BITRATE", "192k")
        self.encryption_enabled = _env_bool("HLS_ENCRYPTION_ENABLED", True)

        # Streaming sessions
        self.default_quality = os.getenv("DEFAULT_QUALITY", "720p")
        self.session_timeout = int(os.getenv("SESSION_TIMEOUT", "1800"))
        self.session_retention_seconds = int(os.getenv("SESSION_RETENTION_SECONDS", str(24 * 60 * 60)))
        self.activity_window = int(os.getenv("SESSION_ACTIVITY_WINDOW", "60"))
        self.max_heartbeat_gap = int(os.getenv("MAX_HEARTBEAT_GAP", "60"))
        self.completion_threshold = float(os.getenv("COMPLETION_THRESHOLD", "90"))
        self.max_session_events = int(os.getenv("MAX_SESSION_EVENTS", "100"))
        self.recent_event_count = int(os.getenv("RECENT_EVENT_COUNT", "5"))
        self.max_concurrent_sessions = int(os.getenv("MAX_CONCURRENT_SESSIONS", "3"))

        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

        self.validate()

    def validate(self):
        # Keyframes land every 2 seconds, segments must cut on them
        if self.segment_duration <= 0 or self.segment_duration % 2 != 0:
            raise ValueError("HLS_SEGMENT_DURATION must be a positive multiple of 2 seconds")
        if self.max_concurrent_jobs < 1:
            raise ValueError("MAX_CONCURRENT_JOBS must be at least 1")
        if self.storage_backend not in ("local", "s3"):
            raise ValueError(f"Unknown STORAGE_BACKEND: {self.storage_backend}")
        if self.store_backend not in ("memory", "dynamodb"):
            raise ValueError(f"Unknown STORE_BACKEND: {self.store_backend}")

    @property
    def uploads_dir(self) -> str:
        return os.path.join(self.data_dir, "uploads")

    @property
    def jobs_dir(self) -> str:
        return os.path.join(self.data_dir, "jobs")

    def asset_base_url(self, asset_id: str) -> str:
        return f"{self.cdn_base_url}/videos/{asset_id}"

    def get_transcoded_key(self, asset_id: str, filename: str) -> str:
        """S3 key for a published output file"""
        return f"{self.s3_transcoded_prefix}{asset_id}/{filename}"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        settings = Settings()
        if settings.use_ssm:
            from .aws_config import AWSConfig
            AWSConfig(region=settings.aws_region).apply_to(settings)
        _settings = settings
    return _settings
