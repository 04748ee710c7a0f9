"""
Detection and camera configuration.

All tunables of the pulse-detection engine live here so the session
controller, sampler and estimator agree on the same numbers.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class DetectionConfig:
    """
    Parameters of one measurement session.

    Sampling, estimation and timing limits.  The defaults reproduce the
    behaviour users expect from a phone pulse app: a 15 s measurement at
    ~30 fps, with a 450-sample sliding window.
    """

    # Session timing
    duration_seconds: float = 15.0
    progress_interval_ms: int = 100
    settle_delay_ms: int = 500       # let exposure / focus stabilise
    warmup_ms: int = 3000            # no live BPM before this
    frame_rate: float = 30.0
    playback_timeout_ms: int = 5000

    # Signal buffer
    max_samples: int = 450
    min_samples: int = 60

    # Peak detection
    min_peak_distance_ms: int = 300  # 200 BPM ceiling

    # Plausibility (exclusive bounds)
    bpm_low: float = 40.0
    bpm_high: float = 200.0

    # Region sampler (exclusive bounds, 0 – 255)
    roi_fraction: float = 1.0 / 3.0
    brightness_low: float = 80.0
    brightness_high: float = 240.0

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000.0

    def validate(self) -> "DetectionConfig":
        """Raise ``ValueError`` for settings no session could run with."""
        if self.duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        if self.frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        if self.min_samples < 5:
            raise ValueError("min_samples must be at least 5")
        if self.max_samples < self.min_samples:
            raise ValueError("max_samples must be >= min_samples")
        if not 0.0 < self.roi_fraction <= 1.0:
            raise ValueError("roi_fraction must be in (0, 1]")
        if self.brightness_low >= self.brightness_high:
            raise ValueError("brightness_low must be below brightness_high")
        if self.bpm_low >= self.bpm_high:
            raise ValueError("bpm_low must be below bpm_high")
        return self


@dataclass
class CameraConstraints:
    """
    What to ask the camera for.

    ``facing`` is kept for callers that think in terms of front / rear
    cameras; on desktop and Pi backends the device is picked by
    ``camera_index``.
    """

    facing: str = "environment"
    ideal_width: int = 1280
    ideal_height: int = 720
    fps: int = 30
    camera_index: int = 0
    flip_horizontal: bool = False

    @property
    def resolution(self) -> tuple[int, int]:
        return self.ideal_width, self.ideal_height
