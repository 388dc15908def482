"""Register scanning pipeline (F4).

camera permission -> CAPTURING (one frame) -> PROCESSING (recognition)
-> COMPLETE with a CaptureResult, or FAILED then IDLE.
"""

from __future__ import annotations

import structlog

from clevercard.capture.devices import Camera
from clevercard.capture.pipeline import CapturePipeline, CaptureState
from clevercard.capture.recognition import RegisterRecognizer
from clevercard.core.errors import CaptureFailure, PermissionDenied, ProcessingFailure
from clevercard.core.models import CaptureResult
from clevercard.core.register_parser import parse_register_text

logger = structlog.get_logger(__name__)


class RegisterScanner(CapturePipeline):
    """Scans a register page into student rows.

    Usage:
        scanner = RegisterScanner(camera, VisionRegisterRecognizer())
        result = await scanner.scan()
        for row in result.rows:
            print(row.name, row.scores)
    """

    name = "scanner"

    def __init__(self, camera: Camera, recognizer: RegisterRecognizer):
        super().__init__()
        self._camera = camera
        self._recognizer = recognizer

    async def _ensure_permission(self) -> None:
        try:
            granted = await self._camera.request_permission()
        except Exception as e:
            logger.warning("camera_permission_check_failed", error=str(e))
            granted = False
        if not granted:
            self.last_error = PermissionDenied("camera")
            raise self.last_error

    async def scan(self) -> CaptureResult | None:
        """Capture one frame and recognize it.

        Returns:
            The result, or None if the scan was cancelled meanwhile

        Raises:
            PermissionDenied: Camera access refused (state stays as it was)
            CaptureFailure: No frame could be acquired
            ProcessingFailure: Recognition errored or read nothing
        """
        if self.is_busy:
            raise CaptureFailure("Scanner already in progress")

        await self._ensure_permission()
        generation = self._begin(CaptureState.CAPTURING)

        try:
            image = await self._camera.capture_photo()
            if not image:
                raise CaptureFailure("Camera returned an empty frame")
        except Exception as e:
            if not self._is_current(generation):
                return None
            failure = self._capture_failed(generation, e)
            if failure is e:
                raise
            raise failure from e

        if not self._is_current(generation):
            return None

        logger.info("register_frame_captured", size_bytes=len(image))
        return await self._run_processing(generation, lambda: self._recognize(image))

    async def _recognize(self, image: bytes) -> CaptureResult:
        recognition = await self._recognizer.recognize(image)
        text = (recognition.text or "").strip()
        if not text and not recognition.rows:
            raise ProcessingFailure("Recognition returned no text")

        rows = recognition.rows or parse_register_text(text)
        logger.info("register_scanned", rows=len(rows))
        return CaptureResult(
            source="image",
            text=text,
            rows=tuple(rows),
            confidence=recognition.confidence,
        )
