"""Tests for the capture pipeline state machine (F4)."""

import asyncio

import pytest

from clevercard.capture.image import RegisterScanner
from clevercard.capture.pipeline import (
    ALLOWED_TRANSITIONS,
    CapturePipeline,
    CaptureState,
    InvalidTransition,
)
from clevercard.core.errors import CaptureFailure, ProcessingFailure


class TestTransitions:
    def test_processing_only_from_capture_states(self):
        sources = {s for s, targets in ALLOWED_TRANSITIONS.items() if CaptureState.PROCESSING in targets}
        assert sources == {CaptureState.CAPTURING, CaptureState.RECORDING}

    def test_invalid_transition_raises(self):
        pipeline = CapturePipeline()
        with pytest.raises(InvalidTransition):
            pipeline._transition(CaptureState.PROCESSING)
        assert pipeline.state is CaptureState.IDLE

    def test_invalid_transition_is_capture_failure(self):
        assert issubclass(InvalidTransition, CaptureFailure)

    def test_listener_sees_old_and_new(self):
        pipeline = CapturePipeline()
        seen = []
        unsubscribe = pipeline.on_state_change(lambda old, new: seen.append((old, new)))

        pipeline._begin(CaptureState.CAPTURING)
        unsubscribe()
        pipeline._transition(CaptureState.IDLE)

        assert seen == [(CaptureState.IDLE, CaptureState.CAPTURING)]

    def test_begin_while_busy(self):
        pipeline = CapturePipeline()
        pipeline._begin(CaptureState.RECORDING)
        with pytest.raises(CaptureFailure, match="already in progress"):
            pipeline._begin(CaptureState.CAPTURING)


class TestCancel:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("stage", [CaptureState.CAPTURING, CaptureState.RECORDING])
    async def test_cancel_from_capture_stage(self, stage):
        pipeline = CapturePipeline()
        pipeline._begin(stage)

        await pipeline.cancel()

        assert pipeline.state is CaptureState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self):
        pipeline = CapturePipeline()
        await pipeline.cancel()
        assert pipeline.history == [CaptureState.IDLE]

    @pytest.mark.asyncio
    async def test_cancel_during_processing_discards_result(self, camera, recognizer):
        scanner = RegisterScanner(camera, recognizer)
        recognizer.gate = asyncio.Event()

        scan = asyncio.create_task(scanner.scan())
        while scanner.state is not CaptureState.PROCESSING:
            await asyncio.sleep(0)

        await scanner.cancel()
        assert scanner.state is CaptureState.IDLE

        recognizer.gate.set()
        assert await scan is None
        assert scanner.state is CaptureState.IDLE
        assert CaptureState.COMPLETE not in scanner.history

    @pytest.mark.asyncio
    async def test_task_cancellation_returns_to_idle(self, camera, recognizer):
        scanner = RegisterScanner(camera, recognizer)
        recognizer.gate = asyncio.Event()

        scan = asyncio.create_task(scanner.scan())
        while scanner.state is not CaptureState.PROCESSING:
            await asyncio.sleep(0)
        scan.cancel()

        with pytest.raises(asyncio.CancelledError):
            await scan
        assert scanner.state is CaptureState.IDLE


class TestProcessingOutcome:
    @pytest.mark.asyncio
    async def test_exactly_one_outcome_per_processing(self, camera, recognizer):
        scanner = RegisterScanner(camera, recognizer)

        await scanner.scan()
        recognizer.error = ProcessingFailure("model offline")
        with pytest.raises(ProcessingFailure):
            await scanner.scan()

        history = scanner.history
        for index, state in enumerate(history):
            if state is CaptureState.PROCESSING:
                assert history[index + 1] in (CaptureState.COMPLETE, CaptureState.FAILED)
        assert history.count(CaptureState.PROCESSING) == 2
        assert history.count(CaptureState.COMPLETE) == 1
        assert history.count(CaptureState.FAILED) == 1

    @pytest.mark.asyncio
    async def test_failure_settles_to_idle(self, camera, recognizer):
        scanner = RegisterScanner(camera, recognizer)
        recognizer.error = RuntimeError("boom")

        with pytest.raises(ProcessingFailure, match="boom"):
            await scanner.scan()

        assert scanner.state is CaptureState.IDLE
        assert isinstance(scanner.last_error, ProcessingFailure)

    @pytest.mark.asyncio
    async def test_new_run_from_complete(self, camera, recognizer):
        scanner = RegisterScanner(camera, recognizer)

        await scanner.scan()
        assert scanner.state is CaptureState.COMPLETE

        result = await scanner.scan()
        assert result is not None
        assert scanner.state is CaptureState.COMPLETE
