# coursestream/routes/stream.py
from fastapi import APIRouter, Depends

from ..domain import StreamingSession
from ..schemas import SessionInfo, SessionUpdateRequest, StreamRequest, StreamResponse, ThumbnailInfo
from ..services import Services
from ..utils import isoformat
from .dependencies import get_current_user, get_services, owned_session

router = APIRouter()


def _session_info(session: StreamingSession) -> SessionInfo:
    return SessionInfo(
        **session.model_dump(include=set(SessionInfo.model_fields) - {"start_time", "last_activity"}),
        start_time=isoformat(session.start_time),
        last_activity=isoformat(session.last_activity),
    )


@router.post("/stream", response_model=StreamResponse, status_code=201)
def create_stream(body: StreamRequest, user: dict = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    sessions = services.sessions
    hints = {"device_type": body.device_type, "network_type": body.network_type}
    session = sessions.create_session(user["username"], body.asset_id, requested_quality=body.quality,
                                      course_id=body.course_id, device_hints=hints)
    manifest = sessions.get_manifest(body.asset_id)
    return StreamResponse(
        session_id=session.session_id,
        asset_id=manifest.asset_id,
        manifest_url=manifest.master_url,
        format=manifest.format,
        qualities=manifest.qualities,
        quality=session.quality,
        duration=manifest.duration,
        thumbnails=[ThumbnailInfo(time=t.time, url=t.url) for t in manifest.thumbnails],
        poster_url=manifest.poster_url,
        encrypted=manifest.encrypted,
        segment_duration=manifest.segment_duration,
        expires_in=services.settings.session_timeout,
    )


@router.get("/stream/{session_id}", response_model=SessionInfo)
def get_stream(session_id: str, user: dict = Depends(get_current_user),
               services: Services = Depends(get_services)):
    session = owned_session(services.sessions.get_session(session_id), user)
    return _session_info(session)


@router.put("/stream/{session_id}", response_model=SessionInfo)
def update_stream(session_id: str, body: SessionUpdateRequest, user: dict = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    owned_session(services.sessions.get_session(session_id), user)
    session = services.sessions.update_session(session_id, **body.model_dump(exclude_none=True))
    return _session_info(owned_session(session, user))


@router.delete("/stream/{session_id}", response_model=SessionInfo)
def end_stream(session_id: str, user: dict = Depends(get_current_user),
               services: Services = Depends(get_services)):
    owned_session(services.sessions.get_session(session_id), user)
    session = services.sessions.end_session(session_id)
    return _session_info(owned_session(session, user))
