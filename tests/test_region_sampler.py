"""
Unit tests for the region sampler.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from fingertip_pulse.camera import StreamHandle, VideoSink
from fingertip_pulse.config import CameraConstraints
from fingertip_pulse.region_sampler import (
    Accepted,
    FrameCanvas,
    RegionSampler,
    RejectReason,
    Rejected,
    region_of_interest,
)


class _StaticCapture:
    def __init__(self, frame):
        self.frame = frame

    def read(self):
        return True, self.frame

    def release(self):
        pass


def _sink_showing(frame: np.ndarray) -> VideoSink:
    sink = VideoSink()
    sink.attach(StreamHandle(_StaticCapture(frame), "opencv", CameraConstraints()))
    sink.grab()
    return sink


def _uniform(value: int, h: int = 48, w: int = 64) -> np.ndarray:
    return np.full((h, w, 3), value, dtype=np.uint8)


class TestRegionSampler:

    def _sampler(self, now=1234):
        return RegionSampler(clock=lambda: now)

    def test_not_ready_before_first_frame(self):
        outcome = self._sampler().sample(VideoSink())
        assert isinstance(outcome, Rejected)
        assert outcome.reason is RejectReason.NOT_READY

    def test_empty_region_not_ready(self):
        outcome = self._sampler().sample_region(np.empty((0, 0, 3), dtype=np.uint8))
        assert outcome == Rejected(RejectReason.NOT_READY)

    @pytest.mark.parametrize("value", [0, 80, 240, 255])
    def test_brightness_out_of_range_rejected(self, value):
        outcome = self._sampler().sample(_sink_showing(_uniform(value)))
        assert isinstance(outcome, Rejected)
        assert outcome.reason is RejectReason.BRIGHTNESS_OUT_OF_RANGE
        assert outcome.brightness == pytest.approx(value)

    @pytest.mark.parametrize("value", [81, 150, 239])
    def test_brightness_in_range_accepted(self, value):
        outcome = self._sampler().sample(_sink_showing(_uniform(value)))
        assert isinstance(outcome, Accepted)
        assert outcome.sample.average_red == pytest.approx(value)
        assert outcome.sample.timestamp_ms == 1234

    def test_only_centre_square_is_sampled(self):
        frame = np.zeros((90, 90, 3), dtype=np.uint8)
        frame[30:60, 30:60] = (60, 90, 200)     # BGR
        outcome = self._sampler().sample(_sink_showing(frame))
        assert isinstance(outcome, Accepted)
        assert outcome.sample.average_red == pytest.approx(200.0)
        assert outcome.brightness == pytest.approx((200 + 90 + 60) / 3)

    def test_red_channel_is_last_in_bgr(self):
        frame = _uniform(0)
        frame[:, :, 0] = 100
        frame[:, :, 1] = 120
        frame[:, :, 2] = 180
        outcome = self._sampler().sample(_sink_showing(frame))
        assert outcome.sample.average_red == pytest.approx(180.0)

    def test_frame_drawn_to_canvas(self):
        canvas = FrameCanvas()
        sampler = RegionSampler(clock=lambda: 0, canvas=canvas)
        sampler.sample(_sink_showing(_uniform(120, h=30, w=40)))
        assert canvas.size == (40, 30)


class TestRegionOfInterest:

    def test_hd_frame(self):
        assert region_of_interest(1280, 720) == (520, 240, 240, 240)

    def test_portrait_frame_uses_shorter_side(self):
        x, y, w, h = region_of_interest(480, 640)
        assert w == h == 160
        assert (x, y) == (160, 240)

    def test_canvas_read_back_is_clipped(self):
        canvas = FrameCanvas()
        canvas.draw_image(_uniform(100, h=10, w=10))
        assert canvas.get_image_data(-5, -5, 10, 10).shape == (5, 5, 3)
        assert canvas.get_image_data(8, 8, 10, 10).shape == (2, 2, 3)
