# coursestream/routes/history.py
from fastapi import APIRouter, Depends, Query

from ..errors import NotFoundError
from ..schemas import VideoInfo, WatchHistoryEntry, WatchHistoryResponse
from ..services import Services
from .dependencies import get_current_user, get_services

router = APIRouter()


@router.get("/history", response_model=WatchHistoryResponse)
def watch_history(limit: int = Query(default=50, ge=1, le=200), user: dict = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    """Most recent sessions first, as recorded on completion and session end"""
    rows = services.catalog.watch_history(user["username"], limit=limit)
    entries = [
        WatchHistoryEntry(
            session_id=row.session_id,
            asset_id=row.asset_id,
            course_id=row.course_id,
            watch_time=row.watch_time or 0,
            completion_percentage=row.completion_percentage or 0,
            completed=bool(row.completed),
            completed_at=row.completed_at,
            ended_at=row.ended_at,
        )
        for row in rows
    ]
    return WatchHistoryResponse(user_id=user["username"], entries=entries, total=len(entries))


@router.get("/library/{asset_id}", response_model=VideoInfo)
def get_video(asset_id: str, user: dict = Depends(get_current_user),
              services: Services = Depends(get_services)):
    video = services.catalog.get_video(asset_id)
    if video is None:
        raise NotFoundError("Video not found", details={"asset_id": asset_id})
    return VideoInfo(
        asset_id=video.asset_id,
        owner=video.owner,
        course_id=video.course_id,
        filename=video.filename,
        manifest_url=video.manifest_url,
        duration=video.duration,
        qualities=video.qualities or [],
        published_at=video.published_at,
    )
