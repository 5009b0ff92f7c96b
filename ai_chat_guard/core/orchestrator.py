"""
Resilient generation across a fallback chain of model endpoints.

Attempt Order:
1. Endpoints in ascending priority (ties keep configuration order)
2. Up to retry_budget calls per endpoint, backing off between them
3. First success wins; the winning endpoint id travels with the result

A FATAL failure stops the chain at once. Exhausting every endpoint
raises BackendExhausted. Caller cancellation propagates through the
in-flight call and skips the remaining attempts.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from ai_chat_guard.config.loader import BackoffConfig, ModelEndpointConfig
from .backoff import compute_backoff_delay
from .classifier import AttemptClassifier, AttemptTimeout, RetryDecision
from .errors import BackendExhausted, RequestRejected
from .request import (
    AttemptOutcome,
    AttemptRecord,
    GenerationRequest,
    GenerationResult,
)

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    """Remote generation capability."""

    async def generate(
        self, endpoint: ModelEndpointConfig, request: GenerationRequest
    ) -> GenerationResult:
        ...


def validate_request(request: GenerationRequest) -> None:
    """Reject requests that would fail identically on every endpoint.

    Raises:
        RequestRejected: If the request is malformed
    """
    if not request.prompt or not request.prompt.strip():
        raise RequestRejected("prompt is required and cannot be empty")
    if not request.feature or not request.feature.strip():
        raise RequestRejected("feature is required and cannot be empty")
    if request.temperature is not None and not 0 <= request.temperature <= 2:
        raise RequestRejected("temperature must be between 0 and 2")
    if request.max_output_tokens is not None and request.max_output_tokens <= 0:
        raise RequestRejected("max_output_tokens must be > 0")
    if request.input_audio is not None and not request.input_audio.strip():
        raise RequestRejected("audio data is required and cannot be empty")


class GenerationOrchestrator:
    """Turns one request into a sequence of attempts and one result.

    Holds only read-only configuration, so a single instance can serve
    any number of concurrent requests.
    """

    def __init__(
        self,
        endpoints: Sequence[ModelEndpointConfig],
        backend: GenerationBackend,
        backoff: Optional[BackoffConfig] = None,
        classifier: Optional[AttemptClassifier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not endpoints:
            raise ValueError("at least one endpoint is required")
        self.endpoints = tuple(sorted(endpoints, key=lambda e: e.priority))
        self.backend = backend
        self.backoff = backoff or BackoffConfig()
        self.classifier = classifier or AttemptClassifier()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Produce one result from the first endpoint that succeeds.

        Args:
            request: The generation request

        Returns:
            GenerationResult tagged with the winning endpoint id

        Raises:
            RequestRejected: If the request is invalid or a FATAL failure occurs
            BackendExhausted: If every endpoint failed
        """
        validate_request(request)

        attempts: List[AttemptRecord] = []
        for endpoint in self.endpoints:
            if not endpoint.supports(request.required_capabilities):
                logger.debug(
                    "Skipping endpoint %s for %s: missing capabilities %s",
                    endpoint.id,
                    request.feature,
                    sorted(request.required_capabilities - endpoint.capabilities),
                )
                continue

            result = await self._run_endpoint(endpoint, request, attempts)
            if result is not None:
                return result

        logger.error(
            "All endpoints exhausted for %s after %d attempts",
            request.feature,
            len(attempts),
        )
        raise BackendExhausted(tuple(attempts))

    async def _run_endpoint(
        self,
        endpoint: ModelEndpointConfig,
        request: GenerationRequest,
        attempts: List[AttemptRecord],
    ) -> Optional[GenerationResult]:
        """Spend up to the endpoint's retry budget; None means move on."""
        for attempt in range(1, endpoint.retry_budget + 1):
            started = self._clock()
            try:
                result = await self._call(endpoint, request)
            except Exception as error:
                latency = self._clock() - started
                decision = self.classifier.classify(error)
                outcome = (
                    AttemptOutcome.FATAL_ERROR
                    if decision is RetryDecision.FATAL
                    else AttemptOutcome.RETRYABLE_ERROR
                )
                attempts.append(
                    AttemptRecord(endpoint.id, attempt, outcome, latency, repr(error))
                )
                logger.warning(
                    "Attempt %d/%d on %s failed for %s (%s, %.2fs): %s",
                    attempt,
                    endpoint.retry_budget,
                    endpoint.id,
                    request.feature,
                    decision.value,
                    latency,
                    error,
                )

                if decision is RetryDecision.FATAL:
                    raise RequestRejected(str(error) or repr(error), cause=error) from error
                if decision is RetryDecision.RETRY_NEXT:
                    return None
                if attempt < endpoint.retry_budget:
                    await self._sleep(
                        compute_backoff_delay(self.backoff, attempt - 1, self._rng)
                    )
                continue

            latency = self._clock() - started
            attempts.append(
                AttemptRecord(endpoint.id, attempt, AttemptOutcome.SUCCESS, latency)
            )
            logger.debug(
                "Endpoint %s answered %s on attempt %d (%.2fs)",
                endpoint.id,
                request.feature,
                attempt,
                latency,
            )
            return GenerationResult(
                text=result.text,
                endpoint_id=endpoint.id,
                payload=result.payload,
                attempts=tuple(attempts),
            )
        return None

    async def _call(
        self, endpoint: ModelEndpointConfig, request: GenerationRequest
    ) -> GenerationResult:
        try:
            return await asyncio.wait_for(
                self.backend.generate(endpoint, request),
                timeout=endpoint.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise AttemptTimeout(
                f"{endpoint.id} did not answer within {endpoint.timeout_seconds}s"
            ) from e
