"""
Service for keeping per-session conversation state between turns.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import APP_CONFIG
from models.provider import Provider
from models.state import ConversationFilterState

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """What a session remembers: messages, filter state and the last shown providers."""
    history: List[Dict[str, str]] = field(default_factory=list)
    filter_state: ConversationFilterState = field(default_factory=ConversationFilterState)
    last_providers: List[Provider] = field(default_factory=list)


class ConversationService:
    """Service for managing conversation context and history."""

    def __init__(self, cache_ttl: Optional[int] = None, max_history: Optional[int] = None):
        """
        Initialize the conversation service.

        Args:
            cache_ttl: Time-to-live for idle sessions in seconds
            max_history: Number of messages kept per session
        """
        logger.info("Initializing conversation service")
        self.cache_ttl = cache_ttl if cache_ttl is not None else APP_CONFIG["session_ttl"]
        self.max_history = max_history if max_history is not None else APP_CONFIG["session_history"]

        # In-memory session store
        self._sessions: Dict[str, SessionContext] = {}
        self._session_timestamps: Dict[str, float] = {}

    async def get_session(self, session_id: str) -> SessionContext:
        """
        Get the stored context for a session.

        Args:
            session_id: The session identifier

        Returns:
            Stored context, or an empty one for new or expired sessions
        """
        self._clean_expired_sessions()

        if session_id in self._sessions:
            logger.debug(f"Retrieved context for session: {session_id}")
            return self._sessions[session_id]

        logger.debug(f"No existing context for session: {session_id}")
        return SessionContext()

    async def update_session(self,
                             session_id: str,
                             utterance: str,
                             filter_state: ConversationFilterState,
                             providers: List[Provider],
                             reply: Optional[str] = None):
        """
        Record a completed turn.

        Args:
            session_id: The session identifier
            utterance: The user's message
            filter_state: State after this turn
            providers: Providers shown this turn (used for grounding next turn)
            reply: Optional assistant text rendered by the caller
        """
        context = self._sessions.get(session_id) or SessionContext()
        history = context.history + [{"role": "user", "content": utterance}]
        if reply:
            history.append({"role": "assistant", "content": reply})

        self._sessions[session_id] = SessionContext(
            history=history[-self.max_history:],
            filter_state=filter_state,
            last_providers=list(providers) if providers else context.last_providers,
        )
        self._session_timestamps[session_id] = time.time()
        logger.debug(f"Updated session: {session_id}, messages: {len(history)}")

    async def clear_session(self, session_id: str) -> bool:
        """
        Forget a session.

        Returns:
            True if the session existed
        """
        existed = self._sessions.pop(session_id, None) is not None
        self._session_timestamps.pop(session_id, None)
        logger.info(f"Cleared session: {session_id}")
        return existed

    def _clean_expired_sessions(self):
        """Remove expired sessions from memory."""
        current_time = time.time()
        expired_sessions = [
            session_id
            for session_id, timestamp in self._session_timestamps.items()
            if current_time - timestamp > self.cache_ttl
        ]

        for session_id in expired_sessions:
            self._sessions.pop(session_id, None)
            del self._session_timestamps[session_id]

        if expired_sessions:
            logger.info(f"Cleaned {len(expired_sessions)} expired sessions")
