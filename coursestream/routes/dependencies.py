# coursestream/routes/dependencies.py
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from ..domain import StreamingSession
from ..errors import AuthorizationError, NotFoundError
from ..services import Services

# Authentication happens at the gateway in front of this service; it forwards
# the verified identity in these headers.


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(x_user_id: Optional[str] = Header(default=None),
                     x_user_role: Optional[str] = Header(default=None)):
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return {"username": x_user_id, "role": (x_user_role or "student").lower()}


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def admin_required(user: dict = Depends(get_current_user)):
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def uploader_required(user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    if user.get("role") not in services.settings.upload_roles:
        raise HTTPException(
            status_code=403,
            detail=f"Only {', '.join(services.settings.upload_roles)} users can upload videos"
        )
    return user


def owned_session(session: Optional[StreamingSession], user: dict) -> StreamingSession:
    """Ownership rule every session route applies before exposing a session"""
    if session is None:
        raise NotFoundError("Session not found")
    if session.user_id != user["username"] and not is_admin(user):
        raise AuthorizationError("Access denied")
    return session
