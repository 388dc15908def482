"""Capture device contracts and adapters.

The pipeline only depends on the ``Camera`` and ``Microphone`` protocols.
Two adapters ship with the package:

- ImageFileCamera: "captures" a photo that already exists on disk
- SoundDeviceMicrophone: records from the default input device to WAV

Threading model for SoundDeviceMicrophone: the sounddevice callback runs in
the audio thread and only appends to the buffer; file I/O and playback run
through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
import soundfile as sf
import structlog

from clevercard.core.errors import CaptureFailure

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AudioHandle:
    """A finished recording."""

    path: Path
    duration_seconds: float = 0.0
    sample_rate: int | None = None


class Camera(Protocol):
    """Camera capability."""

    async def request_permission(self) -> bool:
        """Check or request access; True when granted."""
        ...

    async def capture_photo(self) -> bytes:
        """Acquire one frame as encoded image bytes."""
        ...


class Microphone(Protocol):
    """Microphone capability."""

    async def request_permission(self) -> bool:
        """Check or request access; True when granted."""
        ...

    async def start_recording(self) -> None:
        ...

    async def stop_recording(self) -> AudioHandle:
        ...

    async def play(self, handle: AudioHandle) -> None:
        """Play a recording back."""
        ...


# =============================================================================
# IMAGE FILE CAMERA
# =============================================================================


class ImageFileCamera:
    """Camera stand-in that returns the bytes of an image file.

    Used by the CLI to scan photos taken elsewhere.
    """

    def __init__(self, path: Path):
        self.path = path

    async def request_permission(self) -> bool:
        return True

    async def capture_photo(self) -> bytes:
        if not self.path.is_file():
            raise CaptureFailure(f"Image not found: {self.path}")
        data = await asyncio.to_thread(self.path.read_bytes)
        if not data:
            raise CaptureFailure(f"Image is empty: {self.path}")
        return data


# =============================================================================
# SOUNDDEVICE MICROPHONE
# =============================================================================


class SoundDeviceMicrophone:
    """Microphone backed by sounddevice; recordings are 16-bit PCM WAV."""

    def __init__(
        self,
        recordings_dir: Path,
        sample_rate: int = 16000,
        channels: int = 1,
    ):
        self.recordings_dir = recordings_dir
        self.sample_rate = sample_rate
        self.channels = channels

        # Audio buffer, guarded by _lock
        self._buffer: list[np.ndarray] = []
        self._lock = threading.Lock()

        self._stream = None

    async def request_permission(self) -> bool:
        """True when an input device is available and can be opened."""
        try:
            import sounddevice as sd

            await asyncio.to_thread(
                sd.check_input_settings,
                samplerate=self.sample_rate,
                channels=self.channels,
            )
        except Exception as e:
            logger.info("microphone_unavailable", error=str(e))
            return False
        return True

    def _audio_callback(self, indata: np.ndarray, frames: int, timeinfo, status) -> None:  # noqa: ANN001
        """sounddevice callback. Buffer only, no I/O."""
        with self._lock:
            self._buffer.append(indata.copy())

    async def start_recording(self) -> None:
        if self._stream is not None:
            raise CaptureFailure("Microphone is already recording")

        import sounddevice as sd

        with self._lock:
            self._buffer = []

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                callback=self._audio_callback,
                blocksize=1024,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            raise CaptureFailure(f"Failed to start recording: {e}") from e

        logger.debug("microphone_started", sample_rate=self.sample_rate)

    async def stop_recording(self) -> AudioHandle:
        stream = self._stream
        if stream is None:
            raise CaptureFailure("Microphone is not recording")

        self._stream = None
        stream.stop()
        stream.close()

        with self._lock:
            chunks = self._buffer
            self._buffer = []

        if not chunks:
            raise CaptureFailure("No audio was captured")

        samples = np.concatenate(chunks, axis=0)
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        path = self.recordings_dir / f"remark_{uuid.uuid4().hex[:8]}.wav"
        await asyncio.to_thread(sf.write, str(path), samples, self.sample_rate, subtype="PCM_16")

        duration = len(samples) / self.sample_rate
        logger.info("recording_saved", path=str(path), duration_seconds=round(duration, 2))
        return AudioHandle(path=path, duration_seconds=duration, sample_rate=self.sample_rate)

    async def play(self, handle: AudioHandle) -> None:
        def _play() -> None:
            import sounddevice as sd

            data, sample_rate = sf.read(str(handle.path), dtype="float32")
            sd.play(data, sample_rate)
            sd.wait()

        await asyncio.to_thread(_play)
