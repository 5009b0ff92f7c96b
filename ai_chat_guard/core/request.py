"""
Generation request and result types.

Requests are immutable once built; results and attempt records live only
for the duration of one orchestration call.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple


class Modality(Enum):
    """Requested output modality."""
    TEXT = "text"
    JSON = "json"
    AUDIO = "audio"


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RETRYABLE_ERROR = "retryable-error"
    FATAL_ERROR = "fatal-error"


# Capability tags an endpoint must carry to serve a modality
_REQUIRED_CAPABILITIES = {
    Modality.TEXT: frozenset(),
    Modality.JSON: frozenset(),
    Modality.AUDIO: frozenset({"audio"}),
}

AUDIO_INPUT_CAPABILITY = "audio_input"
DEFAULT_AUDIO_MIME_TYPE = "audio/wav"


@dataclass(frozen=True)
class HistoryTurn:
    """One prior conversation turn; role is "user" or "model"."""
    role: str
    text: str


def normalize_history(turns: Iterable[Mapping[str, Any]]) -> Tuple[HistoryTurn, ...]:
    """Convert raw history into role-tagged turns starting on a user turn.

    Anything not tagged "user" is treated as a model turn. Leading model
    turns (e.g. a welcome message) are dropped.
    """
    normalized = [
        HistoryTurn(
            role="user" if turn.get("role") == "user" else "model",
            text=str(turn.get("text") or turn.get("content") or ""),
        )
        for turn in turns
    ]
    while normalized and normalized[0].role != "user":
        normalized.pop(0)
    return tuple(normalized)


@dataclass(frozen=True)
class GenerationRequest:
    """One logical "produce an AI response" request.

    input_audio carries base64 audio sent alongside the prompt, as used by
    transcription; it restricts the request to endpoints accepting audio.
    """
    prompt: str
    feature: str
    history: Tuple[HistoryTurn, ...] = ()
    system_instruction: str = ""
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    modality: Modality = Modality.TEXT
    voice: Optional[str] = None
    input_audio: Optional[str] = None
    input_mime_type: str = DEFAULT_AUDIO_MIME_TYPE

    @classmethod
    def create(
        cls,
        prompt: str,
        feature: str,
        history: Iterable[Mapping[str, Any]] = (),
        **kwargs: Any,
    ) -> "GenerationRequest":
        """Build a request from raw history dictionaries."""
        return cls(
            prompt=prompt,
            feature=feature,
            history=normalize_history(history),
            **kwargs,
        )

    @property
    def required_capabilities(self) -> FrozenSet[str]:
        required = _REQUIRED_CAPABILITIES[self.modality]
        if self.input_audio is not None:
            required = required | {AUDIO_INPUT_CAPABILITY}
        return required


@dataclass(frozen=True)
class AttemptRecord:
    """Diagnostics for a single remote call."""
    endpoint_id: str
    attempt: int
    outcome: AttemptOutcome
    latency: float
    error: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    """Winning response plus the endpoint that produced it.

    text holds the textual answer (or transcript for audio); payload holds
    structured content: parsed JSON for JSON requests, base64 audio for
    audio requests.
    """
    text: str
    endpoint_id: str
    payload: Any = None
    attempts: Tuple[AttemptRecord, ...] = field(default=(), compare=False)
