"""Tracking and cancellation of in-flight streaming generations."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, Optional

from docqa.errors import GenerationCancelled, GenerationServiceError
from docqa.generation.generator import TextGenerator

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED)


@dataclass(eq=False, slots=True)
class GenerationSession:
    request_id: Optional[str]
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    state: SessionState = SessionState.PENDING

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class SessionManager:
    """Registry of active generation sessions keyed by request id.

    Request ids come from callers and are not trusted to be unique: starting a
    session with an id that is already active replaces the earlier
    registration, which can then no longer be cancelled by id.
    """

    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator
        self._sessions: Dict[str, GenerationSession] = {}
        self._lock = threading.Lock()

    def start(self, request_id: Optional[str]) -> GenerationSession:
        session = GenerationSession(request_id=request_id)
        if request_id:
            with self._lock:
                replaced = self._sessions.get(request_id)
                self._sessions[request_id] = session
            if replaced is not None:
                LOGGER.debug("Request id %s reused; replacing the previous session", request_id)
        return session

    def get(self, request_id: str) -> Optional[GenerationSession]:
        with self._lock:
            return self._sessions.get(request_id)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def cancel(self, request_id: str) -> bool:
        """Trip the session's cancellation signal. False when the id is unknown."""
        with self._lock:
            session = self._sessions.pop(request_id, None)
        if session is None:
            return False
        session.cancel_event.set()
        LOGGER.info("Request %s cancelled by user", request_id)
        return True

    def discard(self, session: GenerationSession) -> None:
        """End a session that will never stream, e.g. when retrieval failed."""
        self._finish(session, SessionState.FAILED)

    def _finish(self, session: GenerationSession, state: SessionState) -> None:
        if not session.state.terminal:
            session.state = state
        if session.request_id:
            with self._lock:
                if self._sessions.get(session.request_id) is session:
                    del self._sessions[session.request_id]
        LOGGER.debug("Session %s finished: %s", session.request_id, session.state.value)

    async def stream(
        self,
        session: GenerationSession,
        system_prompt: str,
        user_message: str,
        *,
        preamble: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Yield the optional preamble, then generator tokens in order.

        Cancellation ends the stream quietly; any other failure marks the
        session FAILED and is re-raised.
        """
        outcome = SessionState.CANCELLED
        try:
            if session.cancelled:
                return
            if preamble:
                yield preamble

            session.state = SessionState.STREAMING
            tokens = self.generator.stream(
                system_prompt, user_message, cancel_event=session.cancel_event
            )
            try:
                async for token in tokens:
                    if session.cancelled:
                        return
                    yield token
            finally:
                await tokens.aclose()

            if not session.cancelled:
                outcome = SessionState.COMPLETED
        except GenerationCancelled:
            LOGGER.info("Generation for %s stopped after cancellation", session.request_id)
        except Exception as exc:
            if session.cancelled:
                # The provider call failed in the same step the cancel landed.
                LOGGER.info(
                    "Generation for %s ended after cancellation: %s", session.request_id, exc
                )
                return
            outcome = SessionState.FAILED
            if isinstance(exc, GenerationServiceError):
                raise
            raise GenerationServiceError(str(exc)) from exc
        finally:
            self._finish(session, outcome)
