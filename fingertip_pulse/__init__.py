"""
Fingertip Pulse – camera-based heart-rate measurement.
Press a fingertip against the rear camera; the system samples the red
channel of the frame centre and counts pulse peaks to compute BPM.
"""

from fingertip_pulse.config import CameraConstraints, DetectionConfig
from fingertip_pulse.errors import (
    CameraAccessError,
    ImplausibleResultError,
    InsufficientDataError,
    PulseDetectionError,
)
from fingertip_pulse.session import PulseDetector, SessionStatus

__all__ = [
    "CameraAccessError",
    "CameraConstraints",
    "DetectionConfig",
    "ImplausibleResultError",
    "InsufficientDataError",
    "PulseDetectionError",
    "PulseDetector",
    "SessionStatus",
]

__version__ = "0.1.0"
__author__ = "fingertip_pulse"
