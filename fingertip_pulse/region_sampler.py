"""
Fingertip region sampler.

When a finger covers the lens, the frame turns into a uniform,
red-dominant field of mid brightness.  This module crops the centre of the
frame, averages its colour channels and gates on overall brightness:

  - too dark (brightness <= 80): nothing is on the lens yet, or no light;
  - too bright (brightness >= 240): the torch is saturating the sensor,
    usually because the finger is not actually pressed on.

Frames that pass produce one :class:`Sample` of the mean red intensity.
No skin or face detection is needed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Tuple, Union

import numpy as np

from fingertip_pulse.camera import VideoSink
from fingertip_pulse.signal_processor import Sample


class RejectReason(enum.Enum):
    NOT_READY = "not_ready"
    BRIGHTNESS_OUT_OF_RANGE = "brightness_out_of_range"


@dataclass(frozen=True)
class Accepted:
    sample: Sample
    brightness: float


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    brightness: float | None = None


SampleOutcome = Union[Accepted, Rejected]


def region_of_interest(
    width: int, height: int, fraction: float = 1.0 / 3.0
) -> Tuple[int, int, int, int]:
    """Return (x, y, w, h) of the centred square covering *fraction* of the shorter side."""
    side = int(min(width, height) * fraction)
    cx, cy = width // 2, height // 2
    return cx - side // 2, cy - side // 2, side, side


class FrameCanvas:
    """
    Off-screen copy of the latest video frame.

    The sampler draws the frame here and reads pixels back from it; the
    presentation layer may also render it.
    """

    def __init__(self) -> None:
        self._image: np.ndarray | None = None

    def draw_image(self, frame: np.ndarray) -> None:
        self._image = frame

    def get_image_data(self, x: int, y: int, w: int, h: int) -> np.ndarray:
        """Return the pixels of the (x, y, w, h) rectangle, clipped to the image."""
        if self._image is None:
            return np.empty((0, 0, 3), dtype=np.uint8)
        x0, y0 = max(x, 0), max(y, 0)
        return self._image[y0:y + h, x0:x + w]

    @property
    def size(self) -> Tuple[int, int]:
        if self._image is None:
            return 0, 0
        h, w = self._image.shape[:2]
        return w, h

    @property
    def image(self) -> np.ndarray | None:
        return self._image


class RegionSampler:
    """
    Turn the current video frame into a red-channel sample.

    Parameters
    ----------
    clock:
        Millisecond clock used to timestamp accepted samples.
    roi_fraction:
        Side of the sampled square as a fraction of the shorter frame side.
    brightness_low, brightness_high:
        Exclusive brightness bounds (0 – 255) for an accepted frame.
    canvas:
        Read-back surface; a private one is created when omitted.
    """

    def __init__(
        self,
        clock: Callable[[], int],
        roi_fraction: float = 1.0 / 3.0,
        brightness_low: float = 80.0,
        brightness_high: float = 240.0,
        canvas: FrameCanvas | None = None,
    ) -> None:
        self.clock = clock
        self.roi_fraction = roi_fraction
        self.brightness_low = brightness_low
        self.brightness_high = brightness_high
        self.canvas = canvas if canvas is not None else FrameCanvas()

    def sample(self, video: VideoSink) -> SampleOutcome:
        """Sample the frame currently shown by *video*."""
        width, height = video.frame_size
        if not video.has_enough_data or width == 0 or height == 0:
            return Rejected(RejectReason.NOT_READY)

        self.canvas.draw_image(video.current_frame())
        region = self.canvas.get_image_data(
            *region_of_interest(width, height, self.roi_fraction)
        )
        return self.sample_region(region)

    def sample_region(self, region: np.ndarray) -> SampleOutcome:
        """
        Gate and sample an already-cropped BGR *region* (H × W × 3).
        """
        if region.size == 0:
            return Rejected(RejectReason.NOT_READY)

        means = region.reshape(-1, region.shape[-1])[:, :3].astype(np.float64).mean(axis=0)
        mean_b, mean_g, mean_r = (float(v) for v in means)
        brightness = (mean_r + mean_g + mean_b) / 3.0

        if not self.brightness_low < brightness < self.brightness_high:
            return Rejected(RejectReason.BRIGHTNESS_OUT_OF_RANGE, brightness)

        return Accepted(Sample(average_red=mean_r, timestamp_ms=int(self.clock())), brightness)
