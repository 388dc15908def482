"""Capture pipelines: register scanning and voice remarks (F4)."""

from clevercard.capture.audio import VoiceRecorder
from clevercard.capture.image import RegisterScanner
from clevercard.capture.pipeline import CapturePipeline, CaptureState

__all__ = ["CapturePipeline", "CaptureState", "RegisterScanner", "VoiceRecorder"]
