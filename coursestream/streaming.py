# coursestream/streaming.py
"""Per-viewer playback sessions kept alive by client heartbeats.

Expiry is evaluated on read against ``last_activity``; an expired session
stays in the store until its retention TTL runs out but is never advanced
again.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import Settings
from .domain import (HeartbeatResult, HeartbeatStatus, PlaybackEvent, PlaybackEventType,
                     StreamingManifest, StreamingSession)
from .errors import NotFoundError, StorageError
from .profiles import get_profile, next_higher, next_lower, sort_by_bandwidth
from .store import KeyValueStore, manifest_key, session_key, user_sessions_key
from .utils import make_session_id

logger = logging.getLogger(__name__)

SLOW_NETWORKS = ("slow-2g", "2g")
LOW_BUFFER = 10
HEALTHY_BUFFER = 30

# fields a client may change through update_session
UPDATABLE_FIELDS = ("current_position", "quality", "playback_rate", "volume", "is_fullscreen")


def recommend_quality(buffer_health: float, quality: str, network_type: Optional[str] = None,
                      ladder: Sequence[str] = ()) -> Tuple[Optional[str], List[str]]:
    """Recommendation for one heartbeat, computed from its own inputs only.

    Returns (recommended quality or None, messages). A slow network wins
    over the buffer signal.
    """
    ladder = sort_by_bandwidth(ladder) if ladder else sort_by_bandwidth([quality])
    recommended = None
    messages = []

    if buffer_health < LOW_BUFFER:
        messages.append("Low buffer detected. Consider reducing quality.")
        recommended = next_lower(quality, ladder)
    elif buffer_health > HEALTHY_BUFFER and get_profile(quality).bandwidth < get_profile(ladder[-1]).bandwidth:
        messages.append("Good buffer health. Quality can be increased.")
        recommended = next_higher(quality, ladder)

    if network_type in SLOW_NETWORKS:
        recommended = ladder[0]
        messages.append(f"Slow network detected. Consider using {ladder[0]} quality.")

    if recommended and recommended != quality:
        messages.insert(0, f"Quality change recommended: {quality} → {recommended}")
    return recommended, messages


def choose_initial_quality(ladder: Sequence[str], requested: Optional[str], network_type: Optional[str],
                           default_quality: str) -> str:
    ladder = sort_by_bandwidth(ladder)
    if requested in ladder:
        return requested
    if network_type in SLOW_NETWORKS:
        return ladder[0]
    ceiling = get_profile(default_quality).bandwidth
    fitting = [q for q in ladder if get_profile(q).bandwidth <= ceiling]
    return fitting[-1] if fitting else ladder[0]


class StreamingSessionManager:

    def __init__(self, settings: Settings, store: KeyValueStore, catalog=None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.store = store
        self.catalog = catalog
        self.clock = clock
        self._lock = threading.RLock()

    def _save(self, session: StreamingSession):
        self.store.put(session_key(session.session_id), session.model_dump(mode="json"),
                       ttl=self.settings.session_retention_seconds)

    def _is_expired(self, session: StreamingSession, now: float) -> bool:
        return session.ended or now - session.last_activity > self.settings.session_timeout

    def _append_event(self, session: StreamingSession, event: PlaybackEvent):
        session.events.append(event)
        if len(session.events) > self.settings.max_session_events:
            session.events = session.events[-self.settings.max_session_events:]

    def _update_completion(self, session: StreamingSession, position: float, now: float):
        duration = session.config.get("duration") or 0
        if duration > 0:
            session.completion_percentage = round(max(0.0, min(100.0, position / duration * 100)), 2)
        if not session.completed and session.completion_percentage >= self.settings.completion_threshold:
            session.completed = True
            session.completed_at = now
            if self.catalog is not None:
                try:
                    self.catalog.record_completion(session)
                except StorageError as e:
                    logger.warning("Could not record completion for %s: %s", session.session_id, e.message)

    def get_manifest(self, asset_id: str) -> Optional[StreamingManifest]:
        data = self.store.get(manifest_key(asset_id))
        return StreamingManifest.model_validate(data) if data else None

    def get_session(self, session_id: str) -> Optional[StreamingSession]:
        data = self.store.get(session_key(session_id))
        return StreamingSession.model_validate(data) if data else None

    def create_session(self, user_id: str, asset_id: str, requested_quality: Optional[str] = None,
                       course_id: Optional[str] = None,
                       device_hints: Optional[Dict[str, Any]] = None) -> StreamingSession:
        manifest = self.get_manifest(asset_id)
        if manifest is None:
            raise NotFoundError("Video not available for streaming", details={"asset_id": asset_id})

        hints = dict(device_hints or {})
        quality = choose_initial_quality(manifest.qualities, requested_quality,
                                         hints.get("network_type"), self.settings.default_quality)
        now = self.clock()
        session = StreamingSession(
            session_id=make_session_id(),
            user_id=user_id,
            asset_id=asset_id,
            course_id=course_id,
            start_time=now,
            last_activity=now,
            quality=quality,
            config={
                "initial_quality": quality,
                "requested_quality": requested_quality,
                "duration": manifest.duration,
                "qualities": manifest.qualities,
                **{k: v for k, v in hints.items() if v is not None},
            },
        )
        with self._lock:
            self._save(session)
            self.store.add_to_set(user_sessions_key(user_id), session.session_id,
                                  ttl=self.settings.session_retention_seconds)
            self._enforce_session_cap(user_id, now)

        logger.info("▶️  Session %s started for %s on %s at %s", session.session_id, user_id, asset_id, quality)
        return session

    def _enforce_session_cap(self, user_id: str, now: float):
        live = []
        for session_id in self.store.members(user_sessions_key(user_id)):
            session = self.get_session(session_id)
            if session is None or self._is_expired(session, now):
                self.store.remove_from_set(user_sessions_key(user_id), session_id)
                continue
            live.append(session)
        live.sort(key=lambda s: s.start_time)
        while len(live) > self.settings.max_concurrent_sessions:
            oldest = live.pop(0)
            logger.info("Ending session %s, %s is over the concurrent session limit",
                        oldest.session_id, user_id)
            self.end_session(oldest.session_id)

    def heartbeat(self, session_id: str, current_position: float, buffer_health: float, quality: str, *,
                  playback_rate: float = 1.0, volume: float = 1.0, is_fullscreen: bool = False,
                  is_playing: bool = True, network_info: Optional[Dict[str, Any]] = None,
                  player_state: Optional[Dict[str, Any]] = None) -> HeartbeatResult:
        network_type = (network_info or {}).get("effective_type")
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return HeartbeatResult(status=HeartbeatStatus.INVALID)

            now = self.clock()
            if self._is_expired(session, now):
                return HeartbeatResult(
                    status=HeartbeatStatus.EXPIRED,
                    messages=["Session expired. Please restart playback."],
                )

            # real elapsed time, so seeking never inflates watch time
            elapsed = now - session.last_activity
            if 0 <= elapsed < self.settings.max_heartbeat_gap:
                session.watch_time = round(session.watch_time + elapsed, 3)
            session.last_activity = now
            session.current_position = current_position
            session.quality = quality
            session.playback_rate = playback_rate
            session.volume = volume
            session.is_fullscreen = is_fullscreen
            self._update_completion(session, current_position, now)

            if is_playing:
                self._append_event(session, PlaybackEvent(
                    type=PlaybackEventType.HEARTBEAT,
                    timestamp=now,
                    position=current_position,
                    metadata={
                        "quality": quality,
                        "buffer_health": buffer_health,
                        "playback_rate": playback_rate,
                        "volume": volume,
                        "is_fullscreen": is_fullscreen,
                        "network_info": network_info,
                        "player_state": player_state,
                    },
                ))
            self._save(session)

        recommended, messages = recommend_quality(buffer_health, quality, network_type,
                                                  session.config.get("qualities") or [quality])
        return HeartbeatResult(
            status=HeartbeatStatus.OK,
            recommended_quality=recommended,
            messages=messages,
            analytics={
                "watch_time": session.watch_time,
                "completion_percentage": session.completion_percentage,
                "completed": session.completed,
            },
        )

    def track_event(self, session_id: str, event_type: PlaybackEventType, position: float = 0,
                    metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Best-effort telemetry; unknown sessions are ignored"""
        event_type = PlaybackEventType(event_type)
        metadata = dict(metadata or {})
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return False
            now = self.clock()
            self._append_event(session, PlaybackEvent(
                type=event_type, timestamp=now, position=position, metadata=metadata))
            # an expired session is never revived
            if not self._is_expired(session, now):
                session.last_activity = now

            if event_type == PlaybackEventType.ENDED:
                session.current_position = position
                self._update_completion(session, position, now)
            elif event_type == PlaybackEventType.QUALITY_CHANGE:
                new_quality = metadata.get("to") or metadata.get("quality")
                if new_quality:
                    session.quality = new_quality
            elif event_type == PlaybackEventType.ERROR:
                logger.warning("Playback error in session %s at %.1fs: %s",
                               session_id, position, metadata.get("message") or metadata)
            self._save(session)
        return True

    def update_session(self, session_id: str, **changes) -> Optional[StreamingSession]:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise TypeError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return None
            now = self.clock()
            if self._is_expired(session, now):
                return session
            for key, value in changes.items():
                if value is not None:
                    setattr(session, key, value)
            session.last_activity = now
            if changes.get("current_position") is not None:
                self._update_completion(session, session.current_position, now)
            self._save(session)
            return session

    def end_session(self, session_id: str) -> Optional[StreamingSession]:
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return None
            if not session.ended:
                session.ended = True
                session.ended_at = self.clock()
                self._save(session)
            self.store.remove_from_set(user_sessions_key(session.user_id), session_id)

        if self.catalog is not None:
            try:
                self.catalog.record_session_end(session)
            except StorageError as e:
                logger.warning("Could not record watch history for %s: %s", session_id, e.message)
        logger.info("⏹️  Session %s ended (watched %.0fs, %.1f%%)",
                    session_id, session.watch_time, session.completion_percentage)
        return session

    def session_status(self, session: StreamingSession) -> Dict[str, Any]:
        now = self.clock()
        recent = session.events[-self.settings.recent_event_count:]
        return {
            "session_id": session.session_id,
            "asset_id": session.asset_id,
            "current_position": session.current_position,
            "quality": session.quality,
            "watch_time": session.watch_time,
            "completion_percentage": session.completion_percentage,
            "completed": session.completed,
            "status": "active" if now - session.last_activity < self.settings.activity_window else "inactive",
            "expired": self._is_expired(session, now),
            "session_age": now - session.start_time,
            "time_since_last_activity": now - session.last_activity,
            "recent_events": [e.model_dump(mode="json") for e in recent],
            "event_count": len(session.events),
        }
