# coursestream/routes/heartbeat.py
from fastapi import APIRouter, Depends

from ..domain import HeartbeatStatus
from ..errors import AuthorizationError
from ..schemas import HeartbeatRequest, HeartbeatResponse, Recommendations
from ..services import Services
from .dependencies import get_current_user, get_services, is_admin, owned_session

router = APIRouter()


@router.post("/heartbeat", response_model=HeartbeatResponse)
def heartbeat(body: HeartbeatRequest, user: dict = Depends(get_current_user),
              services: Services = Depends(get_services)):
    sessions = services.sessions
    session = sessions.get_session(body.session_id)
    # a missing session is reported as status=invalid, not as a 404
    if session is not None and session.user_id != user["username"] and not is_admin(user):
        raise AuthorizationError("Access denied")

    result = sessions.heartbeat(
        body.session_id,
        body.current_position,
        body.buffer_health,
        body.quality,
        playback_rate=body.playback_rate,
        volume=body.volume,
        is_fullscreen=body.is_fullscreen,
        is_playing=body.is_playing,
        network_info=body.network_info.model_dump() if body.network_info else None,
        player_state=body.player_state.model_dump() if body.player_state else None,
    )
    analytics = result.analytics
    if analytics is None and session is not None and result.status == HeartbeatStatus.EXPIRED:
        analytics = {"watch_time": session.watch_time,
                     "completion_percentage": session.completion_percentage,
                     "completed": session.completed}
    return HeartbeatResponse(
        status=result.status.value,
        session_id=body.session_id,
        server_time=sessions.clock(),
        recommendations=Recommendations(quality=result.recommended_quality, messages=result.messages),
        analytics=analytics,
    )


@router.get("/heartbeat/{session_id}")
def heartbeat_status(session_id: str, user: dict = Depends(get_current_user),
                     services: Services = Depends(get_services)):
    session = owned_session(services.sessions.get_session(session_id), user)
    return services.sessions.session_status(session)
