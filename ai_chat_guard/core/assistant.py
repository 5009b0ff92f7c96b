"""
Chat assistant entry points.

Control flow for a chat turn:
1. Validate the request - malformed input is rejected before quota is spent
2. Usage gate - non-privileged identities are counted and may be denied
3. Generation - the orchestrator walks the fallback chain
4. Persistence - scheduled in the background; its outcome never changes
   the answer returned to the caller
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Mapping, Optional, Protocol, Set, Tuple

from ai_chat_guard.config.loader import ChatGuardConfig
from ai_chat_guard.storage.models import Profile
from .errors import ChatGuardError, LimitReached, RequestRejected
from .identity import Identity, collect_roles, resolve_persona
from .orchestrator import GenerationBackend, GenerationOrchestrator, validate_request
from .persistence import ChatStore, SessionPersistenceCoordinator
from .prompts import (
    HEALTH_CHECK_INSTRUCTION,
    HEALTH_CHECK_PROMPT,
    build_chat_instruction,
    build_lookup_prompt,
    build_related_prompt,
    build_transcription_prompt,
)
from .request import DEFAULT_AUDIO_MIME_TYPE, GenerationRequest, Modality
from .usage_gate import UsageGate, UsageStore

logger = logging.getLogger(__name__)

CHAT_TEMPERATURE = 0.7
CHAT_MAX_TOKENS = 4096
SHORT_ANSWER_MAX_TOKENS = 1000
SPEECH_MAX_CHARS = 4500


class ProfileStore(Protocol):
    def get_profile(self, user_id: str) -> Optional[Profile]:
        ...


class AssistantStore(ProfileStore, UsageStore, ChatStore, Protocol):
    """Everything the assistant needs from the relational store."""


@dataclass(frozen=True)
class ChatQuestion:
    """One chat turn as submitted by a client."""
    message: str
    history: Tuple[Mapping[str, Any], ...] = ()
    session_id: Optional[str] = None
    language: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    user_role: Optional[str] = None
    short_answer: bool = False


@dataclass(frozen=True)
class ChatReply:
    text: str
    endpoint_id: str


@dataclass(frozen=True)
class HealthReport:
    healthy: bool
    endpoint_id: Optional[str] = None
    response: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ChatAssistant:
    """Composes the usage gate, orchestrator and persistence coordinator."""
    orchestrator: GenerationOrchestrator
    gate: UsageGate
    coordinator: SessionPersistenceCoordinator
    profiles: ProfileStore
    privileged_roles: FrozenSet[str] = frozenset({"admin"})
    persistence_timeout: float = 10.0
    _pending: Set["asyncio.Task[Any]"] = field(default_factory=set, init=False, repr=False)

    @classmethod
    def from_config(
        cls,
        config: ChatGuardConfig,
        store: AssistantStore,
        backend: GenerationBackend,
    ) -> "ChatAssistant":
        return cls(
            orchestrator=GenerationOrchestrator(
                endpoints=config.fallback_chain(),
                backend=backend,
                backoff=config.backoff,
            ),
            gate=UsageGate(store, limit=config.quota.free_questions),
            coordinator=SessionPersistenceCoordinator(store),
            profiles=store,
            privileged_roles=config.access.privileged_roles,
            persistence_timeout=config.persistence.timeout_seconds,
        )

    async def ask(self, question: ChatQuestion, identity: Optional[Identity] = None) -> ChatReply:
        """Answer one chat turn.

        Args:
            question: The submitted question, history and locale
            identity: Authenticated caller, or None for a guest

        Returns:
            ChatReply with the answer and the endpoint that produced it

        Raises:
            LimitReached: If the identity has no free questions left
            RequestRejected: If the request is invalid or refused
            BackendExhausted: If every endpoint failed
        """
        profile = await self._load_profile(identity) if identity else None
        persona = resolve_persona(identity, profile, question.user_role)

        request = GenerationRequest.create(
            prompt=question.message,
            feature="chat",
            history=question.history,
            system_instruction=build_chat_instruction(
                persona,
                country=question.country,
                region=question.region,
                language=question.language,
                short_answer=question.short_answer,
            ),
            temperature=CHAT_TEMPERATURE,
            max_output_tokens=(
                SHORT_ANSWER_MAX_TOKENS if question.short_answer else CHAT_MAX_TOKENS
            ),
        )
        validate_request(request)

        if identity:
            roles = collect_roles(identity, profile)
            privileged = roles.is_privileged(self.privileged_roles)
            logger.info(
                "Chat access for %s: roles=%s privileged=%s persona=%s",
                identity.email or identity.id,
                ",".join(roles.roles) or "-",
                privileged,
                persona,
            )
            decision = await self.gate.check_and_increment(identity.id, privileged)
            if not decision.allowed:
                raise LimitReached(identity.id, self.gate.limit)
        else:
            logger.info("Chat access for guest")

        result = await self.orchestrator.generate(request)

        if identity and question.session_id:
            self._schedule_persistence(
                question,
                identity,
                result.text,
                first_turn=not request.history,
            )

        return ChatReply(text=result.text, endpoint_id=result.endpoint_id)

    async def health_check(self) -> HealthReport:
        """Generate a tiny answer to prove the fallback chain works."""
        request = GenerationRequest(
            prompt=HEALTH_CHECK_PROMPT,
            feature="health",
            system_instruction=HEALTH_CHECK_INSTRUCTION,
            max_output_tokens=5,
        )
        try:
            result = await self.orchestrator.generate(request)
        except ChatGuardError as e:
            logger.error("AI smoke test failed: %s", e)
            return HealthReport(healthy=False, error=str(e))

        if "OK" not in result.text:
            return HealthReport(
                healthy=False,
                endpoint_id=result.endpoint_id,
                response=result.text,
                error=f"AI generated unexpected content: {result.text}",
            )
        return HealthReport(healthy=True, endpoint_id=result.endpoint_id, response=result.text)

    async def lookup(self, term: str, region: Optional[str] = None, language: Optional[str] = None) -> str:
        """Dictionary-style definition of a medical term."""
        request = GenerationRequest(
            prompt=build_lookup_prompt(term, region, language),
            feature="dictionary",
        )
        result = await self.orchestrator.generate(request)
        return result.text

    async def related_questions(
        self,
        last_message: str,
        last_response: str,
        persona: Optional[str] = None,
        language: Optional[str] = None,
    ) -> List[str]:
        """Two follow-up questions, or an empty list if anything fails."""
        request = GenerationRequest(
            prompt=build_related_prompt(
                last_message, last_response, persona or "Physician", language
            ),
            feature="related_questions",
            modality=Modality.JSON,
        )
        try:
            result = await self.orchestrator.generate(request)
        except ChatGuardError as e:
            logger.warning("Related questions unavailable: %s", e)
            return []

        questions = result.payload
        if isinstance(questions, dict):
            questions = questions.get("questions")
        if not isinstance(questions, list):
            logger.warning("Related questions payload has no list: %r", result.payload)
            return []
        return [str(item) for item in questions]

    async def speech(self, text: str, voice: Optional[str] = None) -> str:
        """Synthesize speech; returns base64-encoded audio."""
        request = GenerationRequest(
            prompt=text[:SPEECH_MAX_CHARS],
            feature="speech",
            modality=Modality.AUDIO,
            voice=voice,
        )
        result = await self.orchestrator.generate(request)
        return result.payload

    async def transcribe(
        self,
        audio_base64: str,
        mime_type: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> str:
        """Verbatim transcript of recorded speech.

        Only endpoints tagged audio_input are eligible.

        Raises:
            RequestRejected: If no audio is supplied or its type is unsupported
            BackendExhausted: If every eligible endpoint failed
        """
        if not audio_base64 or not audio_base64.strip():
            raise RequestRejected("Audio data required")
        request = GenerationRequest(
            prompt=build_transcription_prompt(language_code),
            feature="transcription",
            input_audio=audio_base64,
            input_mime_type=mime_type or DEFAULT_AUDIO_MIME_TYPE,
        )
        validate_request(request)
        result = await self.orchestrator.generate(request)
        return result.text

    async def drain(self) -> None:
        """Wait for background persistence started by earlier turns."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _load_profile(self, identity: Identity) -> Optional[Profile]:
        try:
            return await asyncio.to_thread(self.profiles.get_profile, identity.id)
        except Exception as e:
            logger.error("Profile fetch failed for %s: %s", identity.id, e)
            return None

    def _schedule_persistence(
        self,
        question: ChatQuestion,
        identity: Identity,
        answer: str,
        first_turn: bool,
    ) -> None:
        # Runs as its own task so caller cancellation cannot abort it
        task = asyncio.create_task(
            self._persist(question, identity, answer, first_turn)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(
        self,
        question: ChatQuestion,
        identity: Identity,
        answer: str,
        first_turn: bool,
    ) -> None:
        try:
            await asyncio.wait_for(
                self.coordinator.persist_turn(
                    question.session_id,
                    identity.id,
                    question.message,
                    answer,
                    first_turn=first_turn,
                    region=question.region,
                    country=question.country,
                ),
                timeout=self.persistence_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Persistence for session %s gave up after %.1fs",
                question.session_id,
                self.persistence_timeout,
            )
        except Exception:
            logger.exception("Unexpected persistence failure for session %s", question.session_id)
