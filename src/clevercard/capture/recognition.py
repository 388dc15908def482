"""Recognition and transcription capabilities.

The pipeline treats these as black boxes behind two protocols. The default
implementations call an OpenAI-compatible endpoint through ``LLMClient``;
any other engine (on-device OCR, a hosted speech service) can be dropped in.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from clevercard.capture.devices import AudioHandle
from clevercard.core.errors import ProcessingFailure
from clevercard.core.models import RegisterRow
from clevercard.llm.client import LLMClient, LLMError
from clevercard.utils.text_utils import parse_score

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Recognition:
    """What a recognizer read off an image."""

    text: str
    rows: list[RegisterRow] = field(default_factory=list)
    confidence: float | None = None


class RegisterRecognizer(Protocol):
    """Reads a register page image."""

    async def recognize(self, image: bytes) -> Recognition:
        ...


class Transcriber(Protocol):
    """Turns recorded speech into text."""

    async def transcribe(self, handle: AudioHandle) -> str:
        ...


# =============================================================================
# PROMPTS
# =============================================================================

REGISTER_SYSTEM_PROMPT = """You read photographed school register pages.
Return a JSON object with:
- "text": every line you can read, in reading order, one per line
- "students": a list of {"name": str, "scores": {subject: number}}
- "confidence": a number between 0 and 1 for how legible the page was
Only include scores you can actually read."""

REGISTER_INSTRUCTION = "Extract the student names and their scores from this register page."


def _rows_from_payload(students: Any) -> list[RegisterRow]:
    rows: list[RegisterRow] = []
    if not isinstance(students, list):
        return rows
    for entry in students:
        if not isinstance(entry, dict) or not entry.get("name"):
            continue
        scores: dict[str, float] = {}
        for subject, raw in (entry.get("scores") or {}).items():
            score = raw if isinstance(raw, (int, float)) else parse_score(str(raw))
            if score is not None:
                scores[str(subject)] = float(score)
        rows.append(RegisterRow(name=str(entry["name"]).strip(), scores=scores))
    return rows


def _clamp_confidence(raw: Any) -> float | None:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return min(max(value, 0.0), 1.0)


# =============================================================================
# DEFAULT IMPLEMENTATIONS
# =============================================================================


class VisionRegisterRecognizer:
    """Register recognition through a vision-capable chat model."""

    def __init__(self, client: LLMClient | None = None):
        self._client = client

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
        return self._client

    async def recognize(self, image: bytes) -> Recognition:
        try:
            payload = await asyncio.to_thread(
                self.client.vision_json, REGISTER_SYSTEM_PROMPT, REGISTER_INSTRUCTION, image
            )
        except LLMError as e:
            raise ProcessingFailure(f"Register recognition failed: {e}") from e

        rows = _rows_from_payload(payload.get("students"))
        text = str(payload.get("text") or "").strip()
        if not text and rows:
            # Rebuild a readable text form from the rows
            text = "\n\n".join(
                "\n".join([f"Student Name: {r.name}"] + [f"{s}: {v:g}" for s, v in r.scores.items()])
                for r in rows
            )

        logger.info("register_recognized", rows=len(rows), chars=len(text))
        return Recognition(text=text, rows=rows, confidence=_clamp_confidence(payload.get("confidence")))


class WhisperTranscriber:
    """Transcription through the endpoint's speech-to-text model."""

    def __init__(self, client: LLMClient | None = None, language: str | None = None):
        self._client = client
        self.language = language

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
        return self._client

    async def transcribe(self, handle: AudioHandle) -> str:
        try:
            text = await asyncio.to_thread(self.client.transcribe, handle.path, self.language)
        except LLMError as e:
            raise ProcessingFailure(f"Transcription failed: {e}") from e

        logger.info("audio_transcribed", path=str(handle.path), chars=len(text))
        return text
