"""Client for OpenAI-compatible AI endpoints.

Backs the default capture capabilities and report insights:
- chat / chat_json: text completions (insights)
- vision_json: image + prompt, JSON answer (register recognition)
- transcribe: speech-to-text (voice remarks)

Works with OpenAI and with any server exposing the same API (set
``ai.base_url`` in the config).
"""

from __future__ import annotations

import base64
import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog
from openai import OpenAI

from clevercard.config.app_config import AIConfig, load_app_config
from clevercard.utils.text_utils import strip_think

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

# Providers known to accept response_format={"type": "json_object"}
JSON_OBJECT_PROVIDERS = {"openai"}

JSON_REPAIR_PROMPT = """Fix the following text and return ONLY valid JSON:
<<<
{invalid_output}
>>>

Reply with the corrected JSON only, no explanations and no markdown."""

IMAGE_MIME_TYPES = {
    b"\x89PNG": "image/png",
    b"\xff\xd8\xff": "image/jpeg",
    b"GIF8": "image/gif",
    b"RIFF": "image/webp",
}


def guess_image_mime(data: bytes) -> str:
    """Guess an image MIME type from its magic bytes (JPEG if unknown)."""
    for magic, mime in IMAGE_MIME_TYPES.items():
        if data.startswith(magic):
            return mime
    return "image/jpeg"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Configuration for the AI client."""

    provider: str = "openai"
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    temperature: float = 0.2
    max_tokens: int = 2048
    timeout: int = 120
    api_key: str | None = None

    @classmethod
    def from_app_config(cls, ai: AIConfig | None = None) -> LLMConfig:
        """Build from the ``ai`` section of the app config."""
        if ai is None:
            ai = load_app_config().ai
        return cls(
            provider=ai.provider,
            base_url=ai.base_url,
            model=ai.model,
            vision_model=ai.vision_model,
            transcription_model=ai.transcription_model,
            timeout=ai.timeout,
            api_key=ai.get_api_key(),
        )


@dataclass
class Message:
    """A chat message; content may be a list of parts for vision requests."""

    role: Literal["system", "user", "assistant"]
    content: str | list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API call."""
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from a chat completion."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


class LLMError(Exception):
    """Error during an AI request."""

    pass


class LLMConnectionError(LLMError):
    """Could not reach the AI endpoint."""

    pass


class LLMResponseError(LLMError):
    """The AI endpoint answered with something unusable."""

    pass


def _wrap_error(error: Exception, config: LLMConfig) -> LLMError:
    error_msg = str(error)
    if "Connection" in error_msg or "connect" in error_msg.lower():
        return LLMConnectionError(
            f"Could not connect to {config.provider} at {config.base_url or 'default endpoint'}: {error}"
        )
    return LLMError(f"AI request failed: {error}")


# =============================================================================
# CLIENT
# =============================================================================


class LLMClient:
    """Synchronous client; async callers wrap calls in ``asyncio.to_thread``."""

    def __init__(self, config: LLMConfig | None = None, model: str | None = None):
        """Initialize the client.

        Args:
            config: Client configuration (built from the app config if omitted)
            model: Override the chat model
        """
        if config is None:
            config = LLMConfig.from_app_config()
        self.config = config
        if model is not None:
            self.config.model = model

        self._client = OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )

        logger.info(
            "llm_client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    def chat(
        self,
        messages: list[Message],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a chat completion request.

        Raises:
            LLMConnectionError: If the endpoint cannot be reached
            LLMResponseError: If the response has no choices
        """
        request_kwargs: dict[str, Any] = {
            "model": model or self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }
        if json_mode and self.config.provider in JSON_OBJECT_PROVIDERS:
            request_kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()
        try:
            response = self._client.chat.completions.create(**request_kwargs)
        except Exception as e:
            raise _wrap_error(e, self.config) from e
        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise LLMResponseError("Empty response from AI endpoint")

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_response",
            model=response.model,
            tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            usage=usage,
            latency_ms=latency_ms,
        )

    @staticmethod
    def _try_parse_json(content: str) -> dict[str, Any] | None:
        """Parse JSON from content: direct, fenced block, then first {...}."""
        content = strip_think(content)

        try:
            parsed = json.loads(content)
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

        fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if fenced:
            try:
                return json.loads(fenced.group(1).strip())
            except json.JSONDecodeError:
                pass

        start = content.find("{")
        end = content.rfind("}") + 1
        if start >= 0 and end > start:
            try:
                return json.loads(content[start:end])
            except json.JSONDecodeError:
                pass

        return None

    def chat_json(
        self,
        messages: list[Message],
        model: str | None = None,
        max_retries: int = 1,
    ) -> dict[str, Any]:
        """Chat expecting a JSON object, with one repair round by default.

        Raises:
            LLMResponseError: If no valid JSON comes back after retries
        """
        response = self.chat(messages, model=model, json_mode=True)
        parsed = self._try_parse_json(response.content)
        if parsed is not None:
            return parsed

        for _ in range(max_retries):
            logger.warning("json_parse_failed_retrying", content=response.content[:100])
            repair = Message(
                role="user",
                content=JSON_REPAIR_PROMPT.format(invalid_output=response.content[:1000]),
            )
            response = self.chat(messages + [repair], model=model, json_mode=True)
            parsed = self._try_parse_json(response.content)
            if parsed is not None:
                logger.info("json_parse_recovered_after_retry")
                return parsed

        raise LLMResponseError(f"No valid JSON in response: {response.content[:200]}...")

    def simple_json(self, system_prompt: str, user_message: str) -> dict[str, Any]:
        """Single-turn chat expecting JSON."""
        messages = [
            Message(role="system", content=system_prompt),
            Message(role="user", content=user_message),
        ]
        return self.chat_json(messages)

    def vision_json(self, system_prompt: str, instruction: str, image: bytes) -> dict[str, Any]:
        """Send an image with an instruction and parse the JSON answer."""
        data_url = f"data:{guess_image_mime(image)};base64,{base64.b64encode(image).decode('ascii')}"
        messages = [
            Message(role="system", content=system_prompt),
            Message(
                role="user",
                content=[
                    {"type": "text", "text": instruction},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            ),
        ]
        return self.chat_json(messages, model=self.config.vision_model)

    def transcribe(self, audio_path: Path, language: str | None = None) -> str:
        """Transcribe an audio file to text.

        Raises:
            LLMConnectionError: If the endpoint cannot be reached
            LLMError: If the request fails
        """
        kwargs: dict[str, Any] = {"model": self.config.transcription_model}
        if language:
            kwargs["language"] = language

        start_time = time.time()
        try:
            with open(audio_path, "rb") as f:
                result = self._client.audio.transcriptions.create(file=f, **kwargs)
        except OSError as e:
            raise LLMError(f"Cannot read audio file {audio_path}: {e}") from e
        except Exception as e:
            raise _wrap_error(e, self.config) from e

        text = result if isinstance(result, str) else getattr(result, "text", "")
        logger.debug(
            "transcription_response",
            model=self.config.transcription_model,
            chars=len(text or ""),
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return (text or "").strip()

    def is_available(self) -> bool:
        """True if the endpoint answers a model listing."""
        try:
            self._client.models.list()
            return True
        except Exception:
            return False
