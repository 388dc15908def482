"""Error taxonomy for the CleverCard core.

Session and store errors travel two ways: the message is stored in the
application state's ``error`` field and the exception is re-raised to the
caller. Capture errors are only raised.
"""

from __future__ import annotations


class CleverCardError(Exception):
    """Base class for all CleverCard errors."""

    pass


class AuthError(CleverCardError):
    """Bad credentials, or an expired/revoked session."""

    pass


class NetworkError(CleverCardError):
    """Remote collaborator unreachable or returned a failure status."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ValidationError(CleverCardError):
    """A record failed validation before or after a remote round-trip."""

    pass


class PermissionDenied(CleverCardError):
    """Camera or microphone access refused.

    Not retryable until the user grants access.
    """

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"{device.capitalize()} permission is required")


class CaptureFailure(CleverCardError):
    """The device could not produce a frame or recording."""

    pass


class ProcessingFailure(CleverCardError):
    """Recognition or transcription errored or returned nothing."""

    pass
