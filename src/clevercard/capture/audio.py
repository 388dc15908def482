"""Voice remark pipeline (F4).

microphone permission -> RECORDING (until stop) -> PROCESSING (transcription)
-> COMPLETE with a CaptureResult, or FAILED then IDLE.

Between stop() and process() the finished take can be played back with
preview(); that never changes the pipeline state.
"""

from __future__ import annotations

import time

import structlog

from clevercard.capture.devices import AudioHandle, Microphone
from clevercard.capture.pipeline import CapturePipeline, CaptureState
from clevercard.capture.recognition import Transcriber
from clevercard.core.errors import CaptureFailure, PermissionDenied, ProcessingFailure
from clevercard.core.models import CaptureResult

logger = structlog.get_logger(__name__)


def format_duration(seconds: float) -> str:
    """Format seconds as MM:SS."""
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


class VoiceRecorder(CapturePipeline):
    """Records a spoken remark and transcribes it.

    Usage:
        recorder = VoiceRecorder(microphone, WhisperTranscriber())
        await recorder.start()
        ...
        await recorder.stop()
        await recorder.preview()          # optional
        result = await recorder.process()
    """

    name = "recorder"

    def __init__(self, microphone: Microphone, transcriber: Transcriber):
        super().__init__()
        self._microphone = microphone
        self._transcriber = transcriber
        self._take: AudioHandle | None = None
        self._device_active = False
        self._started_at: float | None = None

    @property
    def is_recording(self) -> bool:
        """True while the microphone is capturing."""
        return self._device_active

    @property
    def take(self) -> AudioHandle | None:
        """The last finished recording, if any."""
        return self._take

    def elapsed(self) -> float:
        """Seconds recorded so far (or length of the finished take)."""
        if self._device_active and self._started_at is not None:
            return time.monotonic() - self._started_at
        if self._take is not None:
            return self._take.duration_seconds
        return 0.0

    async def _ensure_permission(self) -> None:
        try:
            granted = await self._microphone.request_permission()
        except Exception as e:
            logger.warning("microphone_permission_check_failed", error=str(e))
            granted = False
        if not granted:
            self.last_error = PermissionDenied("microphone")
            raise self.last_error

    async def start(self) -> None:
        """Start recording; an unprocessed take is discarded.

        Raises:
            PermissionDenied: Microphone access refused
            CaptureFailure: The microphone could not start
        """
        if self._state is CaptureState.RECORDING and not self._device_active:
            logger.info("discarding_unprocessed_take")
            self._abandon()
        if self.is_busy:
            raise CaptureFailure("Recorder already in progress")

        await self._ensure_permission()
        self._take = None
        generation = self._begin(CaptureState.RECORDING)

        try:
            await self._microphone.start_recording()
        except Exception as e:
            if not self._is_current(generation):
                return
            failure = self._capture_failed(generation, e)
            if failure is e:
                raise
            raise failure from e

        if not self._is_current(generation):
            # Cancelled while the device was starting
            await self._stop_device_quietly()
            return

        self._device_active = True
        self._started_at = time.monotonic()
        logger.info("recording_started")

    async def stop(self) -> AudioHandle | None:
        """Stop recording and keep the take for preview or processing.

        Returns:
            The take, or None if the run was cancelled meanwhile

        Raises:
            CaptureFailure: Not recording, or the device produced no audio
        """
        if self._state is not CaptureState.RECORDING or not self._device_active:
            raise CaptureFailure("Not recording")

        generation = self._generation
        self._device_active = False
        try:
            handle = await self._microphone.stop_recording()
        except Exception as e:
            if not self._is_current(generation):
                return None
            failure = self._capture_failed(generation, e)
            if failure is e:
                raise
            raise failure from e

        if not self._is_current(generation):
            return None

        self._take = handle
        logger.info("recording_stopped", duration_seconds=round(handle.duration_seconds, 2))
        return handle

    async def preview(self) -> None:
        """Play the finished take back without touching the state.

        Raises:
            CaptureFailure: No take yet, still recording, or playback failed
        """
        if self._device_active:
            raise CaptureFailure("Stop recording before playing it back")
        if self._take is None:
            raise CaptureFailure("Nothing recorded yet")

        try:
            await self._microphone.play(self._take)
        except Exception as e:
            raise CaptureFailure(f"Failed to play recording: {e}") from e

    async def process(self) -> CaptureResult | None:
        """Transcribe the take (stopping the microphone first if needed).

        Returns:
            The result, or None if the run was cancelled meanwhile

        Raises:
            CaptureFailure: Nothing recorded
            ProcessingFailure: Transcription errored or came back empty
        """
        if self._device_active:
            if await self.stop() is None:
                return None
        if self._state is not CaptureState.RECORDING or self._take is None:
            raise CaptureFailure("Nothing recorded to process")

        take = self._take
        return await self._run_processing(self._generation, lambda: self._transcribe(take))

    async def _transcribe(self, take: AudioHandle) -> CaptureResult:
        text = (await self._transcriber.transcribe(take) or "").strip()
        if not text:
            raise ProcessingFailure("Transcription returned no text")
        logger.info("remark_transcribed", chars=len(text))
        return CaptureResult(source="audio", text=text, duration_seconds=take.duration_seconds)

    async def _stop_device_quietly(self) -> None:
        try:
            await self._microphone.stop_recording()
        except Exception as e:
            logger.debug("microphone_stop_after_cancel_failed", error=str(e))

    async def _release(self, abandoned: CaptureState) -> None:
        self._take = None
        if self._device_active:
            self._device_active = False
            await self._stop_device_quietly()
