"""Tests for the register scanning pipeline (F4)."""

import pytest

from clevercard.capture.devices import ImageFileCamera
from clevercard.capture.image import RegisterScanner
from clevercard.capture.pipeline import CaptureState
from clevercard.capture.recognition import Recognition
from clevercard.core.errors import CaptureFailure, PermissionDenied, ProcessingFailure
from clevercard.core.models import RegisterRow


class TestScan:
    @pytest.mark.asyncio
    async def test_successful_scan(self, camera, recognizer):
        scanner = RegisterScanner(camera, recognizer)

        result = await scanner.scan()

        assert result.source == "image"
        assert result.rows == (RegisterRow(name="John Doe", scores={"Mathematics": 85.0}),)
        assert result.confidence == 0.9
        assert scanner.state is CaptureState.COMPLETE
        assert scanner.history == [
            CaptureState.IDLE,
            CaptureState.CAPTURING,
            CaptureState.PROCESSING,
            CaptureState.COMPLETE,
        ]

    @pytest.mark.asyncio
    async def test_rows_parsed_from_text_when_recognizer_gives_none(self, camera, recognizer):
        recognizer.recognition = Recognition(
            text="Student Name: Jane Doe\nEnglish: 91\n\nStudent Name: John Doe\nEnglish: 64"
        )
        scanner = RegisterScanner(camera, recognizer)

        result = await scanner.scan()

        assert [r.name for r in result.rows] == ["Jane Doe", "John Doe"]
        assert result.rows[0].scores == {"English": 91.0}

    @pytest.mark.asyncio
    async def test_permission_denied(self, camera, recognizer):
        camera.granted = False
        scanner = RegisterScanner(camera, recognizer)

        with pytest.raises(PermissionDenied, match="Camera permission is required"):
            await scanner.scan()

        assert scanner.state is CaptureState.IDLE
        assert scanner.history == [CaptureState.IDLE]
        assert camera.captures == 0
        assert isinstance(scanner.last_error, PermissionDenied)

    @pytest.mark.asyncio
    async def test_camera_failure(self, camera, recognizer):
        camera.error = OSError("device busy")
        scanner = RegisterScanner(camera, recognizer)

        with pytest.raises(CaptureFailure, match="device busy"):
            await scanner.scan()

        assert scanner.state is CaptureState.IDLE
        assert recognizer.calls == 0

    @pytest.mark.asyncio
    async def test_empty_frame(self, camera, recognizer):
        camera.image = b""
        scanner = RegisterScanner(camera, recognizer)

        with pytest.raises(CaptureFailure, match="empty frame"):
            await scanner.scan()

    @pytest.mark.asyncio
    async def test_blank_recognition_fails(self, camera, recognizer):
        recognizer.recognition = Recognition(text="   ")
        scanner = RegisterScanner(camera, recognizer)

        with pytest.raises(ProcessingFailure, match="no text"):
            await scanner.scan()

        assert CaptureState.FAILED in scanner.history
        assert scanner.state is CaptureState.IDLE


class TestImageFileCamera:
    @pytest.mark.asyncio
    async def test_reads_file(self, tmp_path):
        path = tmp_path / "register.png"
        path.write_bytes(b"\x89PNG data")

        camera = ImageFileCamera(path)

        assert await camera.request_permission()
        assert await camera.capture_photo() == b"\x89PNG data"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(CaptureFailure, match="Image not found"):
            await ImageFileCamera(tmp_path / "missing.png").capture_photo()
