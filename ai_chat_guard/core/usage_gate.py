"""
Per-identity question quota.

The read-then-write below is not atomic: two concurrent requests from an
identity one question below the limit can both pass, allowing one extra
question. This is an accepted soft limit; closing it needs an atomic
increment-with-check in the store or a per-identity serialization point.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ai_chat_guard.storage.models import UsageRecord

logger = logging.getLogger(__name__)

DEFAULT_FREE_QUESTIONS = 5


class UsageStore(Protocol):
    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        ...

    def insert_usage(self, user_id: str, questions_count: int) -> None:
        ...

    def update_usage(self, user_id: str, questions_count: int) -> None:
        ...


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a quota check; reason is set only when denied."""
    allowed: bool
    questions_count: Optional[int] = None
    reason: Optional[str] = None


ALLOWED_PRIVILEGED = GateDecision(allowed=True)


class UsageGate:
    """Enforces the free question allowance for non-privileged identities."""

    def __init__(self, store: UsageStore, limit: int = DEFAULT_FREE_QUESTIONS):
        if limit < 0:
            raise ValueError("limit must be >= 0")
        self.store = store
        self.limit = limit

    async def check_and_increment(self, identity_id: str, is_privileged: bool) -> GateDecision:
        """Allow and count one question, or deny once the limit is reached.

        Privileged identities are always allowed and their counter is
        never read or written.
        """
        if is_privileged:
            return ALLOWED_PRIVILEGED

        usage = await asyncio.to_thread(self.store.get_usage, identity_id)
        current = usage.questions_count if usage else 0

        if current >= self.limit:
            logger.info(
                "Question limit reached for %s (%d/%d)", identity_id, current, self.limit
            )
            return GateDecision(allowed=False, questions_count=current, reason="LIMIT_REACHED")

        if usage is None:
            await asyncio.to_thread(self.store.insert_usage, identity_id, 1)
        else:
            await asyncio.to_thread(self.store.update_usage, identity_id, current + 1)

        return GateDecision(allowed=True, questions_count=current + 1)
