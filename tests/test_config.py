"""
Unit tests for DetectionConfig.
Run with:  pytest tests/
"""

from __future__ import annotations

import pytest

from fingertip_pulse.config import CameraConstraints, DetectionConfig


class TestDetectionConfig:

    def test_defaults(self):
        cfg = DetectionConfig().validate()
        assert cfg.max_samples == 450
        assert cfg.min_samples == 60
        assert cfg.duration_ms == 15_000
        assert (cfg.brightness_low, cfg.brightness_high) == (80, 240)
        assert (cfg.bpm_low, cfg.bpm_high) == (40, 200)

    @pytest.mark.parametrize("kwargs", [
        {"duration_seconds": 0},
        {"duration_seconds": -1},
        {"frame_rate": 0},
        {"max_samples": 10},
        {"roi_fraction": 0},
        {"brightness_low": 240, "brightness_high": 80},
        {"bpm_low": 200, "bpm_high": 40},
    ])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            DetectionConfig(**kwargs).validate()

    def test_camera_defaults(self):
        c = CameraConstraints()
        assert c.facing == "environment"
        assert c.resolution == (1280, 720)
