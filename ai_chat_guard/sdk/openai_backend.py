"""
OpenAI-compatible generation backend.

Performs exactly one remote call per invocation; retries, fallback and
timeouts belong to the orchestrator.
"""

import json
import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from ..config.loader import BackendConfig, ModelEndpointConfig
from ..core.classifier import (
    CapabilityMismatch,
    ContentRefused,
    InvalidResponse,
    MalformedRequest,
)
from ..core.request import GenerationRequest, GenerationResult, Modality

DEFAULT_VOICE = "alloy"
JSON_MODE_CAPABILITY = "json_mode"

# Chat-completion input_audio accepts these encodings only
_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/wave": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


def audio_format(mime_type: str) -> str:
    """Map a MIME type to the input_audio format name."""
    base = mime_type.split(";", 1)[0].strip().lower()
    try:
        return _AUDIO_FORMATS[base]
    except KeyError:
        raise MalformedRequest(f"Unsupported audio type: {mime_type}") from None


def build_messages(request: GenerationRequest) -> List[Dict[str, Any]]:
    """Translate a request into chat-completion messages."""
    messages: List[Dict[str, Any]] = []
    if request.system_instruction:
        messages.append({"role": "system", "content": request.system_instruction})
    for turn in request.history:
        messages.append({
            "role": "user" if turn.role == "user" else "assistant",
            "content": turn.text,
        })
    if request.input_audio is None:
        messages.append({"role": "user", "content": request.prompt})
    else:
        messages.append({
            "role": "user",
            "content": [
                {
                    "type": "input_audio",
                    "input_audio": {
                        "data": request.input_audio,
                        "format": audio_format(request.input_mime_type),
                    },
                },
                {"type": "text", "text": request.prompt},
            ],
        })
    return messages


def parse_json_payload(text: str) -> Any:
    """Parse a JSON answer, tolerating a surrounding markdown fence."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise InvalidResponse(f"Response is not valid JSON: {e}") from e


class OpenAIBackend:
    """Calls chat completions on behalf of the orchestrator.

    The underlying client never retries by itself so that every remote
    call is visible to the fallback chain.
    """

    def __init__(self, config: Optional[BackendConfig] = None, client: Optional[AsyncOpenAI] = None):
        """Initialize the backend.

        Args:
            config: Connection settings (base URL, API key variable)
            client: Pre-built async client, mainly for tests
        """
        self.config = config or BackendConfig()
        if client is None:
            client = AsyncOpenAI(
                api_key=os.environ.get(self.config.api_key_env),
                base_url=self.config.base_url,
                max_retries=0,
            )
        self.client = client

    async def generate(
        self, endpoint: ModelEndpointConfig, request: GenerationRequest
    ) -> GenerationResult:
        """Make one chat-completion call against the endpoint's model.

        Raises:
            CapabilityMismatch: If the endpoint lacks a required capability
            ContentRefused: If the model refused on content-policy grounds
            InvalidResponse: If the answer carries no usable content
            MalformedRequest: If the input audio type is unsupported
            OpenAI API errors: Propagated without modification
        """
        if not endpoint.supports(request.required_capabilities):
            missing = sorted(request.required_capabilities - endpoint.capabilities)
            raise CapabilityMismatch(
                f"{endpoint.id} lacks capabilities: {', '.join(missing)}"
            )

        params: Dict[str, Any] = {
            "model": endpoint.model,
            "messages": build_messages(request),
        }
        if request.temperature is not None:
            params["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            params["max_tokens"] = request.max_output_tokens
        if request.modality is Modality.AUDIO:
            params["modalities"] = ["text", "audio"]
            params["audio"] = {"voice": request.voice or DEFAULT_VOICE, "format": "wav"}
        if request.modality is Modality.JSON and JSON_MODE_CAPABILITY in endpoint.capabilities:
            params["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**params)

        if not response.choices:
            raise InvalidResponse(f"{endpoint.id} returned no choices")
        choice = response.choices[0]
        message = choice.message

        if choice.finish_reason == "content_filter" or getattr(message, "refusal", None):
            raise ContentRefused(
                getattr(message, "refusal", None) or "Response blocked by content filter"
            )

        if request.modality is Modality.AUDIO:
            audio = getattr(message, "audio", None)
            if audio is None or not audio.data:
                raise InvalidResponse("No audio data generated")
            return GenerationResult(
                text=audio.transcript or "",
                endpoint_id=endpoint.id,
                payload=audio.data,
            )

        text = message.content or ""
        if not text.strip():
            raise InvalidResponse(f"{endpoint.id} returned empty content")

        payload = parse_json_payload(text) if request.modality is Modality.JSON else None
        return GenerationResult(text=text, endpoint_id=endpoint.id, payload=payload)
