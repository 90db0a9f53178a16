# coursestream/orchestrator.py
"""Processing job lifecycle: submit, admission, step execution, cancellation.

    pending -> processing -> completed | failed | cancelled
    pending -> cancelled

Admission is decided by `admit_next`, which only the scheduler calls. Every
job's completion sets `wakeup` so the scheduler re-checks capacity.
"""
import logging
import os
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from .config import Settings
from .domain import (ACTIVE_STATUSES, JobStatus, ProcessingJob, ProcessingOptions,
                     resolve_processing_options)
from .errors import (AuthorizationError, CourseStreamError, JobTimeoutError, NotFoundError,
                     ProbeError, ValidationError)
from .manifest import ManifestBuilder
from .probe import MediaInspector, UploadInfo
from .profiles import get_profile
from .store import KeyValueStore, job_key, manifest_key, user_jobs_key
from .transcoding import RenditionEncoder, thumbnail_timestamps
from .utils import job_out_dir, make_job_id, remove_path

logger = logging.getLogger(__name__)


class JobCancelled(Exception):
    """Raised at a step checkpoint once the job has been cancelled"""


class JobOrchestrator:

    def __init__(self, settings: Settings, store: KeyValueStore, inspector: MediaInspector,
                 encoder: RenditionEncoder, manifest_builder: ManifestBuilder, publisher,
                 catalog=None, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.store = store
        self.inspector = inspector
        self.encoder = encoder
        self.manifest_builder = manifest_builder
        self.publisher = publisher
        self.catalog = catalog
        self.clock = clock

        self._lock = threading.RLock()
        self._jobs: Dict[str, ProcessingJob] = {}
        self._pending: Deque[str] = deque()
        self._active: Set[str] = set()
        # set whenever capacity may have changed
        self.wakeup = threading.Event()

    # persistence

    def _persist(self, job: ProcessingJob):
        self.store.put(job_key(job.job_id), job.model_dump(mode="json"),
                       ttl=self.settings.job_retention_seconds)

    def _load(self, job_id: str) -> Optional[ProcessingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                return job
        data = self.store.get(job_key(job_id))
        return ProcessingJob.model_validate(data) if data else None

    def _update(self, job_id: str, **changes) -> ProcessingJob:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in changes.items():
                setattr(job, key, value)
            self._persist(job)
            return job

    # public operations

    def submit(self, upload: UploadInfo, input_path: str, user_id: str,
               course_id: Optional[str] = None, options=None) -> ProcessingJob:
        """Validate and queue an upload already stored at `input_path`.

        Raises ValidationError, after deleting the upload, when the file or
        the options are unacceptable. No job exists in that case.
        """
        try:
            result = self.inspector.validate(upload, input_path)
        except ProbeError as e:
            remove_path(input_path)
            raise ValidationError([e.message])
        if not result.is_valid:
            remove_path(input_path)
            logger.info("Rejected upload %s from %s: %s", upload.filename, user_id, result.errors)
            raise ValidationError(result.errors)

        metadata = result.metadata
        try:
            resolved: ProcessingOptions = resolve_processing_options(options, metadata)
        except ValidationError:
            remove_path(input_path)
            raise

        job = ProcessingJob(
            job_id=make_job_id(),
            user_id=user_id,
            course_id=course_id,
            original_filename=upload.filename,
            original_filesize=upload.size,
            mime_type=upload.content_type,
            input_path=input_path,
            qualities=resolved.qualities,
            metadata=metadata,
            options=resolved,
            created_at=self.clock(),
            estimated_duration=metadata.duration * len(resolved.qualities),
        )
        with self._lock:
            self._jobs[job.job_id] = job
            self._pending.append(job.job_id)
            self._persist(job)
        self.store.add_to_set(user_jobs_key(user_id), job.job_id, ttl=self.settings.job_retention_seconds)

        logger.info("📥 Queued job %s for %s (%s, qualities=%s)",
                    job.job_id, user_id, upload.filename, ",".join(job.qualities))
        self.wakeup.set()
        return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> ProcessingJob:
        job = self._load(job_id)
        if job is None:
            raise NotFoundError("Job not found", details={"job_id": job_id})
        with self._lock:
            return job.model_copy(deep=True)

    def list_jobs(self, user_id: str, limit: int = 50, status: Optional[JobStatus] = None) -> List[ProcessingJob]:
        with self._lock:
            ids = {j.job_id for j in self._jobs.values() if j.user_id == user_id}
        ids |= self.store.members(user_jobs_key(user_id))

        jobs = []
        for job_id in ids:
            job = self._load(job_id)
            if job is None or job.user_id != user_id:
                continue
            if status is not None and job.status != status:
                continue
            with self._lock:
                jobs.append(job.model_copy(deep=True))
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def active_job_count(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for j in self._jobs.values()
                       if j.user_id == user_id and j.status in ACTIVE_STATUSES)

    def cancel(self, job_id: str, user_id: str, is_admin: bool = False) -> bool:
        with self._lock:
            job = self._load(job_id)
            if job is None:
                raise NotFoundError("Job not found", details={"job_id": job_id})
            if job.user_id != user_id and not is_admin:
                raise AuthorizationError("Not allowed to cancel this job")
            if job.is_terminal:
                return False

            was_pending = job.status == JobStatus.PENDING
            job.status = JobStatus.CANCELLED
            job.current_step = "cancelled"
            job.completed_at = self.clock()
            if job_id in self._pending:
                self._pending.remove(job_id)
            self._active.discard(job_id)
            self._persist(job)

        logger.info("🛑 Cancelled job %s (was %s)", job_id, "pending" if was_pending else "processing")
        if was_pending:
            self._cleanup(job)
        # processing jobs clean up at their next checkpoint
        self.wakeup.set()
        return True

    def statistics(self) -> Dict[str, int]:
        with self._lock:
            stats = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                stats[job.status.value] += 1
            stats["active_slots"] = len(self._active)
            stats["queue_length"] = len(self._pending)
            return stats

    def purge_expired_jobs(self) -> int:
        """Drop terminal jobs past the retention window from the in-memory index"""
        cutoff = self.clock() - self.settings.job_retention_seconds
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items()
                       if job.is_terminal and (job.completed_at or job.created_at) < cutoff]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("Purged %d expired jobs", len(expired))
        return len(expired)

    # scheduling

    def admit_next(self) -> Optional[str]:
        """Promote the oldest pending job if a slot is free"""
        with self._lock:
            if len(self._active) >= self.settings.max_concurrent_jobs:
                return None
            while self._pending:
                job_id = self._pending.popleft()
                job = self._jobs.get(job_id)
                if job is None or job.status != JobStatus.PENDING:
                    continue
                job.status = JobStatus.PROCESSING
                job.started_at = self.clock()
                job.current_step = "starting"
                self._active.add(job_id)
                self._persist(job)
                logger.info("🚀 Started job %s (%d/%d slots)",
                            job_id, len(self._active), self.settings.max_concurrent_jobs)
                return job_id
            return None

    def _checkpoint(self, job_id: str) -> float:
        """Stop a cancelled or overdue job, otherwise return its remaining time budget"""
        with self._lock:
            job = self._jobs[job_id]
            if job.status == JobStatus.CANCELLED:
                raise JobCancelled(job_id)
            elapsed = self.clock() - job.started_at
            if elapsed > self.settings.processing_timeout:
                raise JobTimeoutError(
                    f"Processing exceeded {self.settings.processing_timeout}s time limit")
            return self.settings.processing_timeout - elapsed

    def _set_step(self, job_id: str, step: str):
        with self._lock:
            job = self._jobs[job_id]
            if job.status == JobStatus.PROCESSING:
                job.current_step = step
                self._persist(job)

    def _advance(self, job_id: str, done: int, total: int):
        # 100 is reserved for the completed transition
        progress = min(int(done * 100 / total), 99)
        with self._lock:
            job = self._jobs[job_id]
            if job.status == JobStatus.PROCESSING and progress > job.progress:
                job.progress = progress
                self._persist(job)

    def _plan(self, job: ProcessingJob) -> List[Tuple[str, Optional[str]]]:
        steps: List[Tuple[str, Optional[str]]] = [("encode", q) for q in job.qualities]
        if job.options.generate_thumbnails:
            steps.append(("thumbnails", None))
        if job.options.extract_audio:
            steps.append(("audio", None))
        steps.append(("manifest", None))
        steps.append(("publish", None))
        return steps

    def process_job(self, job_id: str) -> bool:
        """Run every step of an admitted job. Returns True once its slot is free."""
        with self._lock:
            job = self._jobs[job_id].model_copy(deep=True)

        output_dir = job_out_dir(self.settings.jobs_dir, job_id)
        job = self._update(job_id, output_path=output_dir).model_copy(deep=True)
        steps = self._plan(job)
        renditions: Dict[str, str] = {}
        thumbnails: List[Tuple[float, str]] = []
        manifest = None
        published = False

        try:
            for index, (step, quality) in enumerate(steps):
                budget = self._checkpoint(job_id)
                self._set_step(job_id, f"encoding_{quality}" if quality else step)

                if step == "encode":
                    renditions[quality] = self.encoder.encode_quality(
                        job_id, job.input_path, get_profile(quality), output_dir, timeout=budget)
                elif step == "thumbnails":
                    timestamps = thumbnail_timestamps(job.metadata.duration, self.settings.thumbnail_count)
                    paths = self.encoder.generate_thumbnails(
                        job_id, job.input_path, job.metadata.duration, output_dir,
                        timestamps=timestamps, timeout=budget)
                    thumbnails = list(zip(timestamps, paths))
                elif step == "audio":
                    self.encoder.extract_audio(job_id, job.input_path, output_dir, timeout=budget)
                elif step == "manifest":
                    manifest = self.manifest_builder.build(job, renditions, thumbnails)
                elif step == "publish":
                    self.publisher.publish(job_id, output_dir)
                    published = True

                if index + 1 < len(steps):
                    self._advance(job_id, index + 1, len(steps))

            self._checkpoint(job_id)
            self._complete(job_id, manifest)
        except JobCancelled:
            logger.info("Job %s stopped after cancellation", job_id)
            self._cleanup(job, published=published)
        except CourseStreamError as e:
            self._fail(job, e.message, published)
        except Exception as e:
            logger.exception("❌ Unexpected error processing job %s", job_id)
            self._fail(job, str(e) or e.__class__.__name__, published)
        finally:
            with self._lock:
                self._active.discard(job_id)
            self.wakeup.set()
        return True

    def _complete(self, job_id: str, manifest):
        self.store.put(manifest_key(job_id), manifest.model_dump(mode="json"),
                       ttl=self.settings.manifest_retention_seconds)
        job = self._load(job_id)
        if self.catalog is not None:
            self.catalog.record_publication(job, manifest)

        with self._lock:
            job = self._jobs[job_id]
            if job.status != JobStatus.PROCESSING:
                raise JobCancelled(job_id)
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.current_step = "completed"
            job.completed_at = self.clock()
            job.manifest_url = manifest.master_url
            job.output_path = manifest.base_url
            self._active.discard(job_id)
            self._persist(job)

        remove_path(os.path.join(self.settings.jobs_dir, job_id))
        remove_path(job.input_path)
        logger.info("✅ Job %s completed in %.1fs", job_id, job.completed_at - job.started_at)

    def _fail(self, job: ProcessingJob, message: str, published: bool):
        with self._lock:
            current = self._jobs[job.job_id]
            if current.status != JobStatus.PROCESSING:
                # cancelled while the failing step ran
                failed = False
            else:
                current.status = JobStatus.FAILED
                current.error = message
                current.current_step = "failed"
                current.completed_at = self.clock()
                self._active.discard(job.job_id)
                self._persist(current)
                failed = True
        if failed:
            logger.error("❌ Job %s failed: %s", job.job_id, message)
        self._cleanup(job, published=published)

    def _cleanup(self, job: ProcessingJob, published: bool = False):
        """Remove every output of a job that did not complete"""
        self.store.delete(manifest_key(job.job_id))
        if published:
            try:
                self.publisher.remove(job.job_id)
            except CourseStreamError as e:
                logger.warning("Could not remove published outputs for %s: %s", job.job_id, e.message)
            if self.catalog is not None:
                try:
                    self.catalog.remove_video(job.job_id)
                except CourseStreamError as e:
                    logger.warning("Could not remove catalogue entry for %s: %s", job.job_id, e.message)
        remove_path(os.path.join(self.settings.jobs_dir, job.job_id))
        remove_path(job.input_path)
