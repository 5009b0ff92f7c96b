"""
Best-effort persistence of conversation turns.

A turn is the user message plus the model answer, written in that order
and followed by a touch of the parent session. When the parent session
row does not exist yet, it is created just in time and the turn is
written once more:

1. attempt  - insert both messages in one transaction
2. classify - only a missing-session integrity error is recoverable
3. compensate - create the session from the caller-supplied id
4. retry once - a second failure is final

A session that appears concurrently during step 3 counts as created. The
session touch and the first-turn title are best-effort once the messages
are stored.

Failures are logged and reported as SKIPPED; they never reach the caller
of the chat flow.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from ai_chat_guard.storage.models import ChatMessage, ChatSession
from ai_chat_guard.storage.repository import (
    FOREIGN_KEY_VIOLATION,
    SESSIONS_TABLE,
    UNIQUE_VIOLATION,
    StoreError,
)

logger = logging.getLogger(__name__)


class PersistOutcome(Enum):
    PERSISTED = "persisted"
    SKIPPED = "skipped"


class ChatStore(Protocol):
    def insert_messages(self, messages: Sequence[ChatMessage]) -> None:
        ...

    def touch_session(self, session_id: str) -> None:
        ...

    def create_session(self, session: ChatSession) -> None:
        ...

    def update_session_title(self, session_id: str, title: str) -> None:
        ...


def format_timestamp_title(moment: datetime) -> str:
    """Human-readable session title, e.g. "Oct 19, 03:45 PM"."""
    return f"{moment:%b} {moment.day}, {moment:%I:%M %p}"


def is_missing_session_error(error: BaseException, table: str = SESSIONS_TABLE) -> bool:
    """True for a referential-integrity violation naming the sessions table."""
    code = getattr(error, "code", None)
    message = str(getattr(error, "message", None) or error)
    details = getattr(error, "details", None) or ""

    is_foreign_key = code == FOREIGN_KEY_VIOLATION or "foreign key" in message.lower()
    names_table = table in details or table in message
    return is_foreign_key and names_table


class SessionPersistenceCoordinator:
    """Appends user/model message pairs, self-healing a missing session."""

    def __init__(self, store: ChatStore, now: Callable[[], datetime] = datetime.now):
        self.store = store
        self._now = now

    async def persist_turn(
        self,
        session_id: str,
        user_id: str,
        user_text: str,
        model_text: str,
        first_turn: bool = False,
        region: Optional[str] = None,
        country: Optional[str] = None,
    ) -> PersistOutcome:
        """Durably record one turn; never raises for storage failures.

        Args:
            session_id: Caller-supplied session id (natural key)
            user_id: Owner identity
            user_text: The user's message
            model_text: The generated answer
            first_turn: True when the incoming history was empty
            region: Locale metadata for a just-in-time session
            country: Locale metadata for a just-in-time session

        Returns:
            PERSISTED if both messages were written, otherwise SKIPPED
        """
        messages = (
            ChatMessage(session_id=session_id, user_id=user_id, role="user", content=user_text),
            ChatMessage(session_id=session_id, user_id=user_id, role="model", content=model_text),
        )

        error = await self._attempt(session_id, messages)
        if error is not None:
            if not is_missing_session_error(error):
                logger.error(
                    "Persistence failed for session %s: %s", session_id, error
                )
                return PersistOutcome.SKIPPED

            logger.warning(
                "Session %s missing, creating it just in time", session_id
            )
            if not await self._create_session(session_id, user_id, region, country):
                return PersistOutcome.SKIPPED

            error = await self._attempt(session_id, messages)
            if error is not None:
                logger.error(
                    "Failed to persist turn for session %s after recovery: %s",
                    session_id,
                    error,
                )
                return PersistOutcome.SKIPPED

        await self._touch_session(session_id)
        if first_turn:
            await self._apply_first_turn_title(session_id)
        return PersistOutcome.PERSISTED

    async def _attempt(
        self, session_id: str, messages: Sequence[ChatMessage]
    ) -> Optional[Exception]:
        try:
            await asyncio.to_thread(self.store.insert_messages, messages)
        except Exception as e:
            return e
        return None

    async def _create_session(
        self,
        session_id: str,
        user_id: str,
        region: Optional[str],
        country: Optional[str],
    ) -> bool:
        session = ChatSession(
            id=session_id,
            user_id=user_id,
            title=format_timestamp_title(self._now()),
            region=region or "International",
            country=country or "International",
        )
        try:
            await asyncio.to_thread(self.store.create_session, session)
        except StoreError as e:
            if e.code != UNIQUE_VIOLATION:
                logger.exception("Failed to create missing session %s", session_id)
                return False
            logger.info("Session %s was created concurrently", session_id)
        except Exception:
            logger.exception("Failed to create missing session %s", session_id)
            return False
        return True

    async def _touch_session(self, session_id: str) -> None:
        try:
            await asyncio.to_thread(self.store.touch_session, session_id)
        except Exception:
            logger.exception("Failed to touch session %s", session_id)

    async def _apply_first_turn_title(self, session_id: str) -> None:
        title = format_timestamp_title(self._now())
        try:
            await asyncio.to_thread(self.store.update_session_title, session_id, title)
        except Exception:
            logger.exception("Failed to set title for session %s", session_id)
            return
        logger.info("Titled session %s: %r", session_id, title)
