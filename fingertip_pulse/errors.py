"""Exceptions raised by the pulse-detection engine."""

from __future__ import annotations


class PulseDetectionError(Exception):
    """Base class; ``message`` is the text shown to the user."""

    message = "Pulse detection failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class CameraAccessError(PulseDetectionError, PermissionError):
    """Camera access was denied, no camera exists, or playback never started."""

    message = "Could not access the camera. Check permissions."


class InsufficientDataError(PulseDetectionError):
    """Too few samples or peaks were collected to compute a heart rate."""

    message = (
        "Could not detect a pulse. Press your finger firmly against "
        "the camera and hold still."
    )


class ImplausibleResultError(PulseDetectionError):
    """A BPM was computed but lies outside the physiological range."""

    message = InsufficientDataError.message

    def __init__(self, bpm: float, message: str | None = None) -> None:
        self.bpm = bpm
        super().__init__(message)
