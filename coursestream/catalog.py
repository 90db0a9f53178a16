# coursestream/catalog.py
"""Relational record of published videos and per-session watch history."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import models
from .domain import ProcessingJob, StreamingManifest, StreamingSession
from .errors import StorageError

logger = logging.getLogger(__name__)


def _to_datetime(ts: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts is not None else None


class VideoCatalog:

    def __init__(self, session_factory):
        self.SessionLocal = session_factory

    def record_publication(self, job: ProcessingJob, manifest: StreamingManifest):
        db = self.SessionLocal()
        try:
            video = db.query(models.Video).filter(models.Video.asset_id == manifest.asset_id).first()
            if video is None:
                video = models.Video(asset_id=manifest.asset_id)
                db.add(video)
            video.owner = job.user_id
            video.course_id = job.course_id
            video.filename = job.original_filename
            video.manifest_url = manifest.master_url
            video.duration = manifest.duration
            video.qualities = manifest.qualities
            db.commit()
            logger.info("✅ Catalogued video %s", manifest.asset_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("❌ Failed to catalogue video %s: %s", manifest.asset_id, e)
            raise StorageError(f"Failed to record video {manifest.asset_id}") from e
        finally:
            db.close()

    def remove_video(self, asset_id: str):
        db = self.SessionLocal()
        try:
            db.query(models.Video).filter(models.Video.asset_id == asset_id).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to remove video {asset_id}") from e
        finally:
            db.close()

    def get_video(self, asset_id: str) -> Optional[models.Video]:
        db = self.SessionLocal()
        try:
            return db.query(models.Video).filter(models.Video.asset_id == asset_id).first()
        finally:
            db.close()

    def _save_history(self, session: StreamingSession):
        db = self.SessionLocal()
        try:
            row = db.query(models.WatchHistory).filter(
                models.WatchHistory.session_id == session.session_id).first()
            if row is None:
                row = models.WatchHistory(session_id=session.session_id)
                db.add(row)
            row.user_id = session.user_id
            row.asset_id = session.asset_id
            row.course_id = session.course_id
            row.watch_time = session.watch_time
            row.completion_percentage = session.completion_percentage
            row.completed = session.completed
            row.completed_at = _to_datetime(session.completed_at)
            row.ended_at = _to_datetime(session.ended_at)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("❌ Failed to save watch history for %s: %s", session.session_id, e)
            raise StorageError(f"Failed to record watch history for {session.session_id}") from e
        finally:
            db.close()

    def record_completion(self, session: StreamingSession):
        """Progress tracking hook, called once when a session crosses the completion threshold"""
        self._save_history(session)
        logger.info("✅ User %s completed %s", session.user_id, session.asset_id)

    def record_session_end(self, session: StreamingSession):
        self._save_history(session)

    def watch_history(self, user_id: str, limit: int = 50) -> List[models.WatchHistory]:
        db = self.SessionLocal()
        try:
            return (db.query(models.WatchHistory)
                    .filter(models.WatchHistory.user_id == user_id)
                    .order_by(models.WatchHistory.id.desc())
                    .limit(limit)
                    .all())
        finally:
            db.close()
