"""
Failure classification for backend calls.

Maps any exception raised by an attempt to exactly one retry decision:

- RETRY_SAME: transient on this endpoint (timeouts, 5xx, transport resets)
- RETRY_NEXT: this endpoint cannot serve the request (quota, capability,
  unavailability); unknown failures land here too
- FATAL: the request itself is unsatisfiable (validation, content policy)
"""

import asyncio
from enum import Enum
from typing import Dict, Tuple, Type

import openai


class RetryDecision(Enum):
    RETRY_SAME = "retry-same"
    RETRY_NEXT = "retry-next"
    FATAL = "fatal"


class BackendSignal(Exception):
    """Base class for failures raised by this package around a remote call."""


class AttemptTimeout(BackendSignal):
    """A single attempt exceeded its endpoint's hard timeout."""


class CapabilityMismatch(BackendSignal):
    """The endpoint cannot produce the requested modality."""


class EndpointUnavailable(BackendSignal):
    """The endpoint explicitly reported itself unavailable."""


class ContentRefused(BackendSignal):
    """The model refused the request on content-policy grounds."""


class MalformedRequest(BackendSignal):
    """The request was rejected by validation before or at the backend."""


class InvalidResponse(BackendSignal):
    """The backend answered without usable content."""


# Checked in order; subclasses must precede their bases
_TYPE_RULES: Tuple[Tuple[Type[BaseException], RetryDecision], ...] = (
    (ContentRefused, RetryDecision.FATAL),
    (MalformedRequest, RetryDecision.FATAL),
    (AttemptTimeout, RetryDecision.RETRY_SAME),
    (CapabilityMismatch, RetryDecision.RETRY_NEXT),
    (EndpointUnavailable, RetryDecision.RETRY_NEXT),
    (InvalidResponse, RetryDecision.RETRY_NEXT),
    (openai.APITimeoutError, RetryDecision.RETRY_SAME),
    (openai.APIConnectionError, RetryDecision.RETRY_SAME),
    (asyncio.TimeoutError, RetryDecision.RETRY_SAME),
    (TimeoutError, RetryDecision.RETRY_SAME),
    (ConnectionError, RetryDecision.RETRY_SAME),
)

_STATUS_RULES: Dict[int, RetryDecision] = {
    400: RetryDecision.FATAL,
    401: RetryDecision.RETRY_NEXT,
    403: RetryDecision.RETRY_NEXT,
    404: RetryDecision.RETRY_NEXT,
    408: RetryDecision.RETRY_SAME,
    409: RetryDecision.RETRY_SAME,
    413: RetryDecision.FATAL,
    422: RetryDecision.FATAL,
    429: RetryDecision.RETRY_NEXT,
}


class AttemptClassifier:
    """Total mapping from attempt failures to retry decisions."""

    def __init__(
        self,
        type_rules: Tuple[Tuple[Type[BaseException], RetryDecision], ...] = _TYPE_RULES,
        status_rules: Dict[int, RetryDecision] = _STATUS_RULES,
        default: RetryDecision = RetryDecision.RETRY_NEXT,
    ):
        self.type_rules = type_rules
        self.status_rules = status_rules
        self.default = default

    def classify(self, error: BaseException) -> RetryDecision:
        for error_type, decision in self.type_rules:
            if isinstance(error, error_type):
                return decision

        if isinstance(error, openai.APIStatusError):
            return self._classify_status(error.status_code)

        return self.default

    def _classify_status(self, status_code: int) -> RetryDecision:
        if status_code in self.status_rules:
            return self.status_rules[status_code]
        if status_code >= 500:
            return RetryDecision.RETRY_SAME
        return self.default
