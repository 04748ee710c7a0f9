"""
Unit tests for the orthostatic recommendation and history.
Run with:  pytest tests/
"""

from __future__ import annotations

from datetime import date

import pytest

from fingertip_pulse.orthostatic import (
    Measurement,
    MeasurementHistory,
    Status,
    recommend,
)


class TestRecommend:

    @pytest.mark.parametrize("difference, status", [
        (-5, Status.EXCELLENT),
        (11, Status.EXCELLENT),
        (12, Status.GOOD),
        (17, Status.GOOD),
        (18, Status.ATTENTION),
        (24, Status.ATTENTION),
        (25, Status.WARNING),
        (40, Status.WARNING),
    ])
    def test_thresholds(self, difference, status):
        assert recommend(difference).status is status

    def test_measurement_from_rates(self):
        m = Measurement.from_rates(68, 88, on=date(2025, 12, 9))
        assert m.difference == 20
        assert m.status is Status.ATTENTION
        assert m.recommendation == recommend(20).text
        assert m.date == "2025-12-09"


class TestMeasurementHistory:

    def _history(self) -> MeasurementHistory:
        history = MeasurementHistory()
        history.add(Measurement.from_rates(70, 102))
        history.add(Measurement.from_rates(72, 96))
        history.add(Measurement.from_rates(68, 88))
        return history

    def test_newest_first(self):
        history = self._history()
        assert [m.difference for m in history] == [20, 24, 32]

    def test_average_difference(self):
        assert self._history().average_difference() == 25
        assert MeasurementHistory().average_difference() == 0

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "history.json"
        history = self._history()
        history.save(path)
        loaded = MeasurementHistory.load(path)
        assert len(loaded) == 3
        assert [m.to_dict() for m in loaded] == [m.to_dict() for m in history]
        assert loaded.measurements[0].status is Status.ATTENTION

    def test_load_missing_file_is_empty(self, tmp_path):
        assert len(MeasurementHistory.load(tmp_path / "nope.json")) == 0
