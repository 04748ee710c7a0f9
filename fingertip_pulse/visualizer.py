"""
Real-time overlay visualiser.

Draws the following elements onto each video frame:
  • The sampled region-of-interest square in the frame centre.
  • Current (or final) BPM readout.
  • Measurement progress bar.
  • A scrolling strip of the mean-removed red signal.
  • Error text when the measurement failed.
"""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from fingertip_pulse.region_sampler import region_of_interest


# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN  = (0, 220,  80)
_RED    = (0,  50, 220)
_YELLOW = (0, 210, 210)
_WHITE  = (255, 255, 255)
_BLACK  = (0, 0, 0)
_CYAN   = (220, 200,  0)
_DARK   = (30, 30, 30)


class Visualizer:
    """
    Draws the measurement UI onto OpenCV frames in-place.

    Parameters
    ----------
    waveform_height:
        Pixel height of the waveform panel at the bottom of the frame.
    roi_fraction:
        Must match the sampler so the box shows what is actually measured.
    """

    def __init__(self, waveform_height: int = 80, roi_fraction: float = 1.0 / 3.0) -> None:
        self.waveform_height = waveform_height
        self.roi_fraction = roi_fraction

    def draw(
        self,
        frame: np.ndarray,
        current_bpm: int,
        progress: float,
        is_detecting: bool,
        final_bpm: Optional[int] = None,
        error: Optional[str] = None,
        signal: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Annotate *frame* in-place and return it."""
        h, w = frame.shape[:2]
        x, y, rw, rh = region_of_interest(w, h, self.roi_fraction)

        color = _GREEN if is_detecting else _YELLOW
        cv2.rectangle(frame, (x, y), (x + rw, y + rh), color, 2)
        cv2.putText(
            frame, "Scanning..." if is_detecting else "Cover with fingertip",
            (x, y - 8), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA,
        )

        self._draw_bpm(frame, current_bpm, final_bpm, is_detecting)
        self._draw_progress(frame, progress)

        if signal is not None and len(signal) > 1:
            self._draw_waveform(frame, signal)

        if error:
            cv2.putText(
                frame, error,
                (16, 90), cv2.FONT_HERSHEY_SIMPLEX, 0.45, _RED, 1, cv2.LINE_AA,
            )
        return frame

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_bpm(
        self,
        frame: np.ndarray,
        current_bpm: int,
        final_bpm: Optional[int],
        is_detecting: bool,
    ) -> None:
        if final_bpm is not None:
            text, col = f"{final_bpm} BPM", _GREEN
        elif current_bpm > 0:
            text, col = f"{current_bpm} BPM", _YELLOW
        else:
            status = "Warming up..." if is_detecting else "--"
            cv2.putText(
                frame, status,
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 0.7, _YELLOW, 2, cv2.LINE_AA,
            )
            return

        cv2.putText(
            frame, text,
            (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, _BLACK, 5, cv2.LINE_AA,
        )
        cv2.putText(
            frame, text,
            (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, col, 3, cv2.LINE_AA,
        )

    def _draw_progress(self, frame: np.ndarray, progress: float) -> None:
        h, w = frame.shape[:2]
        bar_w = int((w - 32) * min(progress, 100.0) / 100.0)
        y0, y1 = h - self.waveform_height - 12, h - self.waveform_height - 4
        cv2.rectangle(frame, (16, y0), (w - 16, y1), _DARK, -1)
        cv2.rectangle(frame, (16, y0), (16 + bar_w, y1), _CYAN, -1)
        cv2.putText(
            frame, f"{progress:.0f}%",
            (16, y0 - 2), cv2.FONT_HERSHEY_SIMPLEX, 0.35, _CYAN, 1, cv2.LINE_AA,
        )

    def _draw_waveform(self, frame: np.ndarray, signal: np.ndarray) -> None:
        """Draw a scrolling waveform in a dark strip at the bottom of the frame."""
        h, w = frame.shape[:2]
        panel_top = h - self.waveform_height
        cv2.rectangle(frame, (0, panel_top), (w, h), _DARK, -1)

        # Normalise signal to [0, 1]
        sig = signal[-w:]
        mn, mx = sig.min(), sig.max()
        rng = mx - mn if mx != mn else 1.0
        norm = (sig - mn) / rng

        margin = 6
        plot_h = self.waveform_height - 2 * margin
        xs = np.linspace(0, w - 1, len(norm)).astype(int)
        ys = (panel_top + margin + (1.0 - norm) * plot_h).astype(int)

        pts = np.column_stack([xs, ys]).astype(np.int32)
        cv2.polylines(frame, [pts[:, None, :]], False, _RED, 1, cv2.LINE_AA)

        cv2.putText(
            frame, "PPG",
            (4, panel_top + 14), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )
