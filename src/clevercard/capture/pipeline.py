"""Capture pipeline state machine (F4).

Shared by register scanning and voice remarks:

    IDLE -> CAPTURING | RECORDING -> PROCESSING -> COMPLETE | FAILED

- cancel() returns to IDLE from any state and discards in-flight results
- every PROCESSING entry ends in exactly one of COMPLETE or FAILED
  (unless cancelled first)
- FAILED settles back to IDLE so the pipeline can be started again
- a new run may start from IDLE or COMPLETE

Failures are raised to the caller; the pipeline never writes the shared
application error.
"""

from __future__ import annotations

import asyncio
from enum import Enum, auto
from typing import Awaitable, Callable, TypeVar

import structlog

from clevercard.core.errors import CaptureFailure, CleverCardError, ProcessingFailure

logger = structlog.get_logger(__name__)

T = TypeVar("T")

StateListener = Callable[["CaptureState", "CaptureState"], None]


class CaptureState(Enum):
    """Pipeline states."""

    IDLE = auto()
    CAPTURING = auto()  # image: waiting for a frame
    RECORDING = auto()  # audio: accumulating sound until stopped
    PROCESSING = auto()  # recognition / transcription running
    COMPLETE = auto()
    FAILED = auto()


ALLOWED_TRANSITIONS: dict[CaptureState, set[CaptureState]] = {
    CaptureState.IDLE: {CaptureState.CAPTURING, CaptureState.RECORDING},
    CaptureState.CAPTURING: {CaptureState.PROCESSING, CaptureState.IDLE},
    CaptureState.RECORDING: {CaptureState.PROCESSING, CaptureState.IDLE},
    CaptureState.PROCESSING: {CaptureState.COMPLETE, CaptureState.FAILED, CaptureState.IDLE},
    CaptureState.COMPLETE: {CaptureState.IDLE},
    CaptureState.FAILED: {CaptureState.IDLE},
}


class InvalidTransition(CaptureFailure):
    """A state change the pipeline does not allow."""

    def __init__(self, current: CaptureState, target: CaptureState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot go from {current.name} to {target.name}")


class CapturePipeline:
    """Base class holding the state machine and cancellation bookkeeping.

    Subclasses drive the transitions. Cancellation bumps a generation
    counter; work started under an older generation drops its result.
    """

    name = "capture"

    def __init__(self):
        self._state = CaptureState.IDLE
        self._generation = 0
        self._listeners: list[StateListener] = []
        self.history: list[CaptureState] = [CaptureState.IDLE]
        self.last_error: CleverCardError | None = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state in (
            CaptureState.CAPTURING,
            CaptureState.RECORDING,
            CaptureState.PROCESSING,
        )

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener(old, new)``; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, target: CaptureState) -> None:
        current = self._state
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(current, target)
        self._state = target
        self.history.append(target)
        logger.debug("capture_transition", pipeline=self.name, old=current.name, new=target.name)
        for listener in list(self._listeners):
            try:
                listener(current, target)
            except Exception as e:
                logger.warning("capture_listener_failed", pipeline=self.name, error=str(e))

    def _begin(self, capture_state: CaptureState) -> int:
        """Enter the capture stage; returns the run's generation."""
        if self.is_busy:
            raise CaptureFailure(f"{self.name.capitalize()} already in progress")
        if self._state is not CaptureState.IDLE:
            self._transition(CaptureState.IDLE)
        self.last_error = None
        self._transition(capture_state)
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _release(self, abandoned: CaptureState) -> None:
        """Hook for subclasses to free device resources after a cancel."""

    def _abandon(self) -> CaptureState:
        """Invalidate the current run and go to IDLE; returns the old state."""
        abandoned = self._state
        self._generation += 1
        if abandoned is not CaptureState.IDLE:
            logger.info("capture_cancelled", pipeline=self.name, state=abandoned.name)
            self._transition(CaptureState.IDLE)
        return abandoned

    async def cancel(self) -> None:
        """Abandon the current run and return to IDLE.

        The state is IDLE as soon as this is called; device cleanup follows.
        """
        abandoned = self._abandon()
        await self._release(abandoned)

    def _capture_failed(self, generation: int, error: Exception) -> CaptureFailure:
        """Record a device failure during the capture stage and go back to IDLE."""
        failure = error if isinstance(error, CaptureFailure) else CaptureFailure(str(error))
        if self._is_current(generation):
            self.last_error = failure
            self._transition(CaptureState.IDLE)
        logger.warning("capture_failed", pipeline=self.name, error=str(failure))
        return failure

    async def _run_processing(
        self,
        generation: int,
        work: Callable[[], Awaitable[T]],
    ) -> T | None:
        """Run the processing stage; None if the run was cancelled meanwhile."""
        self._transition(CaptureState.PROCESSING)
        try:
            result = await work()
        except asyncio.CancelledError:
            if self._is_current(generation):
                self._abandon()
            raise
        except Exception as e:
            if not self._is_current(generation):
                return None
            failure = e if isinstance(e, ProcessingFailure) else ProcessingFailure(str(e))
            self.last_error = failure
            self._transition(CaptureState.FAILED)
            self._transition(CaptureState.IDLE)
            logger.warning("capture_processing_failed", pipeline=self.name, error=str(failure))
            if failure is e:
                raise
            raise failure from e

        if not self._is_current(generation):
            logger.info("capture_result_discarded", pipeline=self.name)
            return None

        self._transition(CaptureState.COMPLETE)
        return result
