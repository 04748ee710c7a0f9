"""
Unit tests for the overlay visualiser.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np

from fingertip_pulse.visualizer import Visualizer


def _blank() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


def _green_text(frame: np.ndarray) -> bool:
    band = frame[10:60, 16:320]
    return bool(np.any((band[..., 1] > 200) & (band[..., 2] < 120)))


class TestResultOverlay:

    def test_final_bpm_is_drawn_green(self):
        frame = Visualizer().draw(_blank(), current_bpm=0, progress=100.0,
                                  is_detecting=False, final_bpm=72)
        assert _green_text(frame)

    def test_no_final_bpm_shows_placeholder_only(self):
        frame = Visualizer().draw(_blank(), current_bpm=0, progress=100.0,
                                  is_detecting=False)
        assert not _green_text(frame)

    def test_error_text_is_drawn_in_red(self):
        frame = Visualizer().draw(_blank(), current_bpm=0, progress=100.0,
                                  is_detecting=False,
                                  error="Not enough data. Keep your finger still.")
        assert np.any(frame[75:95, :, 2] > 0)

    def test_no_error_leaves_error_line_empty(self):
        frame = Visualizer().draw(_blank(), current_bpm=0, progress=100.0,
                                  is_detecting=False)
        assert not np.any(frame[75:95])

    def test_draw_returns_same_frame(self):
        frame = _blank()
        assert Visualizer().draw(frame, 75, 50.0, True) is frame
