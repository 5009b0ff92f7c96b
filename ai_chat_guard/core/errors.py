"""
Typed failures surfaced to callers of the chat core.

Every failure carries a stable machine code so transport layers can map
it to a response without inspecting messages.
"""

from typing import Optional, Tuple


class ChatGuardError(Exception):
    """Base class for caller-visible failures."""
    code = "ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LimitReached(ChatGuardError):
    """The identity has used its free question allowance."""
    code = "LIMIT_REACHED"

    def __init__(self, identity_id: str, limit: int):
        super().__init__(
            f"You used your {limit} free questions. "
            "Please upgrade your plan to continue."
        )
        self.identity_id = identity_id
        self.limit = limit


class RequestRejected(ChatGuardError):
    """The request cannot be satisfied by any endpoint."""
    code = "REJECTED"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class BackendExhausted(ChatGuardError):
    """Every configured endpoint was tried and none succeeded."""
    code = "EXHAUSTED"

    def __init__(self, attempts: Tuple = ()):
        super().__init__(
            "The AI is currently unavailable after multiple retries. "
            "Please try again later."
        )
        self.attempts = attempts
