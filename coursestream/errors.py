# coursestream/errors.py
from typing import Any, Dict, List, Optional


class CourseStreamError(Exception):
    """Base error; status_code/code are what the HTTP layer reports"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(CourseStreamError):
    status_code = 400
    code = "validation_error"

    def __init__(self, errors: List[str], message: str = "Video validation failed"):
        super().__init__(f"{message}: {', '.join(errors)}", details=list(errors))
        self.errors = list(errors)


class NotFoundError(CourseStreamError):
    status_code = 404
    code = "not_found"


class AuthorizationError(CourseStreamError):
    status_code = 403
    code = "forbidden"


class TooManyActiveJobsError(CourseStreamError):
    status_code = 429
    code = "too_many_active_jobs"

    def __init__(self, active_jobs: int, max_jobs: int):
        super().__init__(
            "Too many active video processing jobs",
            details={"active_jobs": active_jobs, "max_jobs": max_jobs},
        )
        self.active_jobs = active_jobs
        self.max_jobs = max_jobs


class ProbeError(CourseStreamError):
    status_code = 422
    code = "probe_failed"


class EncodingError(CourseStreamError):
    code = "encoding_failed"

    def __init__(self, message: str, job_id: Optional[str] = None,
                 quality: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(message, details={"job_id": job_id, "quality": quality})
        self.job_id = job_id
        self.quality = quality
        self.stderr = stderr


class ManifestError(CourseStreamError):
    code = "manifest_failed"


class StorageError(CourseStreamError):
    code = "storage_failed"


class JobTimeoutError(CourseStreamError):
    code = "job_timeout"
