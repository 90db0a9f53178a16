# coursestream/routes/analytics.py
from fastapi import APIRouter, Depends

from ..errors import AuthorizationError
from ..schemas import AnalyticsRequest, AnalyticsResponse
from ..services import Services
from .dependencies import get_current_user, get_services, is_admin

router = APIRouter()


@router.post("/analytics", response_model=AnalyticsResponse)
def track_event(body: AnalyticsRequest, user: dict = Depends(get_current_user),
                services: Services = Depends(get_services)):
    """Playback telemetry; events for unknown sessions are dropped"""
    session = services.sessions.get_session(body.session_id)
    if session is None:
        return AnalyticsResponse(session_id=body.session_id, tracked=False)
    if session.user_id != user["username"] and not is_admin(user):
        raise AuthorizationError("Access denied")
    tracked = services.sessions.track_event(body.session_id, body.event_type, body.position, body.metadata)
    return AnalyticsResponse(session_id=body.session_id, tracked=tracked)
