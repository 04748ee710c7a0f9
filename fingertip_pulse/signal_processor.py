"""
PPG signal buffer and BPM estimator.

Algorithm
---------
1. Keep a sliding window of the last ``max_samples`` (default 450) mean
   red-channel values, each with the millisecond timestamp it was sampled at.
2. Detrend: subtract the window mean so only the pulsatile oscillation
   remains (the finger's constant redness is removed).
3. Find 5-point strict local maxima (two samples on each side) that are
   above zero.
4. Drop any peak closer than ``min_distance_ms`` (default 300 ms) to the
   previously accepted one; a real pulse cannot recur faster than 200 BPM.
5. BPM = 60000 / mean peak-to-peak interval.

No bandpass filter or FFT is applied: the window mean plus the local-maximum
shape test is enough for a fingertip pressed on the lens.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Sequence

import numpy as np
from scipy.signal import argrelextrema

logger = logging.getLogger(__name__)

MAX_SAMPLES = 450
MIN_SAMPLES = 60
MIN_PEAK_DISTANCE_MS = 300
BPM_LOW = 40.0
BPM_HIGH = 200.0

# Neighbours compared on each side of a peak candidate.
_PEAK_ORDER = 2


@dataclass(frozen=True)
class Sample:
    """One accepted observation from the region sampler."""

    average_red: float
    timestamp_ms: int


def detect_peaks(
    values: Sequence[float],
    timestamps: Sequence[int],
    min_distance_ms: float = MIN_PEAK_DISTANCE_MS,
) -> list[int]:
    """
    Return the timestamps of the accepted pulse peaks in *values*.

    Parameters
    ----------
    values:
        Raw red-channel means.  The mean is removed here.
    timestamps:
        Millisecond timestamps aligned with *values*.
    min_distance_ms:
        A candidate must be strictly more than this far after the previous
        accepted peak.
    """
    signal = np.asarray(values, dtype=np.float64)
    n = len(signal)
    if n < 2 * _PEAK_ORDER + 1:
        return []

    normalized = signal - signal.mean()

    # argrelextrema clips at the edges; only indices with two real
    # neighbours on each side are candidates.
    (candidates,) = argrelextrema(normalized, np.greater, order=_PEAK_ORDER)
    candidates = candidates[
        (candidates >= _PEAK_ORDER) & (candidates <= n - 1 - _PEAK_ORDER)
    ]

    peaks: list[int] = []
    for i in candidates:
        if normalized[i] <= 0:
            continue
        ts = int(timestamps[i])
        if not peaks or ts - peaks[-1] > min_distance_ms:
            peaks.append(ts)
    return peaks


def bpm_from_peaks(peaks: Sequence[int]) -> float:
    """Convert peak timestamps (ms) to BPM; 0.0 when fewer than two peaks."""
    if len(peaks) < 2:
        return 0.0
    intervals = np.diff(np.asarray(peaks, dtype=np.float64))
    mean_interval = float(intervals.mean())
    if mean_interval <= 0:
        return 0.0
    return 60000.0 / mean_interval


def display_bpm(bpm: float) -> int:
    """Round *bpm* to a whole beat, halves up (72.5 -> 73)."""
    return math.floor(bpm + 0.5)


def is_plausible(bpm: float, low: float = BPM_LOW, high: float = BPM_HIGH) -> bool:
    """True when *bpm* lies strictly inside (low, high)."""
    return low < bpm < high


class SignalBuffer:
    """
    Sliding window of red-channel samples.

    Parameters
    ----------
    max_samples:
        Window capacity; the oldest sample is evicted past this.
    min_samples:
        Minimum number of samples before :meth:`estimate` returns a BPM.
    min_peak_distance_ms:
        Refractory period between accepted peaks.
    """

    def __init__(
        self,
        max_samples: int = MAX_SAMPLES,
        min_samples: int = MIN_SAMPLES,
        min_peak_distance_ms: float = MIN_PEAK_DISTANCE_MS,
    ) -> None:
        self.max_samples = max_samples
        self.min_samples = min_samples
        self.min_peak_distance_ms = min_peak_distance_ms

        # Values and timestamps are evicted together by the shared maxlen.
        self._values: Deque[float] = deque(maxlen=max_samples)
        self._timestamps: Deque[int] = deque(maxlen=max_samples)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, sample: Sample) -> None:
        """Add *sample*, evicting the oldest one when the window is full."""
        if self._timestamps and sample.timestamp_ms < self._timestamps[-1]:
            raise ValueError(
                f"timestamp {sample.timestamp_ms} is older than "
                f"the newest buffered sample ({self._timestamps[-1]})"
            )
        self._values.append(float(sample.average_red))
        self._timestamps.append(int(sample.timestamp_ms))

    def estimate(self) -> float:
        """
        Return the BPM of the current window.

        Returns 0.0 when there are fewer than ``min_samples`` samples or
        fewer than two accepted peaks.  Does not modify the buffer.
        """
        if len(self._values) < self.min_samples:
            return 0.0
        peaks = detect_peaks(
            self._values, self._timestamps, self.min_peak_distance_ms
        )
        bpm = bpm_from_peaks(peaks)
        logger.debug("%d samples, %d peaks -> %.1f BPM", len(self), len(peaks), bpm)
        return bpm

    def normalized(self) -> np.ndarray:
        """Mean-removed red signal (for plotting).  Empty when no data."""
        if not self._values:
            return np.array([])
        signal = np.array(self._values, dtype=np.float64)
        return signal - signal.mean()

    @property
    def values(self) -> list[float]:
        return list(self._values)

    @property
    def timestamps(self) -> list[int]:
        return list(self._timestamps)

    @property
    def fill_ratio(self) -> float:
        """How full the window is (0 – 1)."""
        return len(self._values) / self.max_samples

    def clear(self) -> None:
        """Drop every sample."""
        self._values.clear()
        self._timestamps.clear()

    def __len__(self) -> int:
        return len(self._values)
