"""
Concurrency-safe registry of active avatar conversation sessions.

The registry table is guarded by one asyncio.Lock; mutations of a single
session (activity timestamps, message counters) go through that session's own
lock so unrelated sessions never wait on each other.

Every removal, whether explicit, caused by a disconnect or by the idle sweep,
publishes exactly one ``session_ended`` event to the session's scope and then
closes that scope on the broadcaster.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from avatarcore.enums.orchestration import Priority
from avatarcore.exceptions import InvalidRequestError
from avatarcore.pools.event_broadcaster import EventBroadcaster
from utils.ml_logging import get_logger

logger = get_logger(__name__)

DEFAULT_PERSONALITY = "Friendly and helpful assistant"


@dataclass(frozen=True)
class AvatarConfig:
    """Avatar persona frozen for the lifetime of a session."""

    avatar_id: str
    name: str = "Assistant"
    personality: str = DEFAULT_PERSONALITY
    voice_id: str = "default"
    language: str = "en"

    @classmethod
    def default(cls, avatar_id: str) -> "AvatarConfig":
        return cls(avatar_id=avatar_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avatarId": self.avatar_id,
            "name": self.name,
            "personality": self.personality,
            "voiceId": self.voice_id,
            "language": self.language,
        }


@dataclass
class AvatarSession:
    session_id: str
    user_id: str
    avatar_id: str
    avatar_config: AvatarConfig
    priority: Priority
    created_at: float
    last_activity_at: float
    connection_id: Optional[str] = None
    message_count: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def idle_for(self, now: float) -> float:
        return now - self.last_activity_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "avatarId": self.avatar_id,
            "avatarConfig": self.avatar_config.to_dict(),
            "priority": self.priority.value,
            "createdAt": self.created_at,
            "lastActivityAt": self.last_activity_at,
            "messageCount": self.message_count,
        }


class ThreadSafeSessionManager:
    """
    Registry of active sessions with idle expiry.

    Uses asyncio.Lock for the table and a per-session lock for entity
    mutations. The clock is injectable so tests drive time explicitly.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._sessions: Dict[str, AvatarSession] = {}
        self._lock = asyncio.Lock()
        self._broadcaster = broadcaster
        self._clock = clock

    async def create_session(
        self,
        user_id: Optional[str],
        avatar_id: Optional[str],
        priority: Any = None,
        *,
        avatar_config: Optional[AvatarConfig] = None,
        connection_id: Optional[str] = None,
    ) -> AvatarSession:
        """Create and register a new session; both ids are required."""
        if not user_id:
            raise InvalidRequestError("userId is required", field="userId")
        if not avatar_id:
            raise InvalidRequestError("avatarId is required", field="avatarId")

        now = self._clock()
        base_id = f"{user_id}-{avatar_id}-{int(now * 1000)}"
        async with self._lock:
            session_id = base_id
            suffix = 1
            while session_id in self._sessions:
                suffix += 1
                session_id = f"{base_id}-{suffix}"
            session = AvatarSession(
                session_id=session_id,
                user_id=user_id,
                avatar_id=avatar_id,
                avatar_config=avatar_config or AvatarConfig.default(avatar_id),
                priority=Priority.parse(priority),
                created_at=now,
                last_activity_at=now,
                connection_id=connection_id,
            )
            self._sessions[session_id] = session
            total = len(self._sessions)

        logger.info(
            "Added avatar session %s. Total sessions: %s",
            session_id,
            total,
            extra={"session_id": session_id},
        )
        return session

    async def get(self, session_id: str) -> Optional[AvatarSession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def touch(self, session_id: str) -> Optional[AvatarSession]:
        """Refresh ``last_activity_at``; it never moves backwards."""
        session = await self.get(session_id)
        if session is None:
            return None
        async with session.lock:
            session.last_activity_at = max(session.last_activity_at, self._clock())
        return session

    async def record_message(self, session_id: str) -> Optional[AvatarSession]:
        """Count one inbound message and touch the session."""
        session = await self.get(session_id)
        if session is None:
            return None
        async with session.lock:
            session.message_count += 1
            session.last_activity_at = max(session.last_activity_at, self._clock())
        return session

    async def remove(self, session_id: str, *, reason: str = "ended") -> bool:
        """Remove a session. Returns True if it existed."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            remaining = len(self._sessions)
        if session is None:
            return False

        logger.info(
            "Removed avatar session %s (%s). Remaining sessions: %s",
            session_id,
            reason,
            remaining,
            extra={"session_id": session_id},
        )
        await self._announce_end(session, reason)
        return True

    async def remove_for_connection(self, connection_id: str) -> List[str]:
        """Tear down every session owned by a disconnected connection."""
        async with self._lock:
            owned = [
                s.session_id
                for s in self._sessions.values()
                if s.connection_id == connection_id
            ]
        removed = []
        for session_id in owned:
            if await self.remove(session_id, reason="disconnected"):
                removed.append(session_id)
        return removed

    async def sweep_idle(self, threshold_s: float) -> List[str]:
        """Remove and report sessions idle for longer than ``threshold_s``."""
        now = self._clock()
        async with self._lock:
            idle = [
                s
                for s in self._sessions.values()
                if s.idle_for(now) > threshold_s and not s.lock.locked()
            ]
            for session in idle:
                del self._sessions[session.session_id]
            remaining = len(self._sessions)

        if idle:
            logger.info(
                "Idle sweep removed %s sessions. Remaining sessions: %s",
                len(idle),
                remaining,
            )
        for session in idle:
            await self._announce_end(session, "idle")
        return [s.session_id for s in idle]

    async def get_session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def get_all_sessions_snapshot(self) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            sessions = list(self._sessions.values())
        return {s.session_id: s.to_dict() for s in sessions}

    async def _announce_end(self, session: AvatarSession, reason: str) -> None:
        await self._broadcaster.publish(
            session.session_id,
            "session_ended",
            {"sessionId": session.session_id, "reason": reason},
        )
        await self._broadcaster.close_scope(session.session_id)
