"""
Unit tests for the input conditioning filter.
Run with:  pytest tests/test_conditioning.py
"""

from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.signal import sosfilt, sosfilt_zi

from ppg_vitals.conditioning import (
    InputConditioner,
    KalmanFilter,
    MovingAverage,
    StreamingBandpass,
)
from ppg_vitals.config import FilterConfig


class TestMovingAverage:

    def test_running_mean(self):
        sma = MovingAverage(3)
        outputs = [sma.filter(v) for v in (3.0, 6.0, 9.0, 12.0)]
        assert outputs == pytest.approx([3.0, 4.5, 6.0, 9.0])

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            MovingAverage(0)

    def test_reset(self):
        sma = MovingAverage(3)
        sma.filter(100.0)
        sma.reset()
        assert sma.filter(7.0) == pytest.approx(7.0)


class TestKalmanFilter:

    def test_first_measurement_seeds_estimate(self):
        kf = KalmanFilter(0.1, 0.01)
        assert kf.filter(150.0) == pytest.approx(150.0)

    def test_constant_input_is_fixed_point(self):
        kf = KalmanFilter(0.1, 0.01)
        for _ in range(50):
            out = kf.filter(42.0)
        assert out == pytest.approx(42.0)

    def test_tracks_step_quickly(self):
        kf = KalmanFilter(0.1, 0.01)
        kf.filter(0.0)
        for _ in range(5):
            out = kf.filter(10.0)
        assert out == pytest.approx(10.0, abs=0.01)

    def test_reset_restores_neutral_state(self):
        kf = KalmanFilter()
        kf.filter(5.0)
        kf.reset()
        assert kf.estimate is None
        assert kf.uncertainty == 1.0


class TestStreamingBandpass:

    def test_constant_input_is_removed(self):
        bp = StreamingBandpass(fps=30.0)
        outputs = [bp.filter(100.0) for _ in range(60)]
        assert max(abs(v) for v in outputs) < 1e-6

    def test_pulse_band_passes(self):
        bp = StreamingBandpass(fps=30.0)
        t = np.arange(300) / 30.0
        signal = 100.0 + 5.0 * np.sin(2 * np.pi * 1.5 * t)
        outputs = np.array([bp.filter(float(v)) for v in signal])
        assert outputs[-90:].std() > 0.5 * (signal[-90:] - 100.0).std()
        assert abs(outputs[-90:].mean()) < 1.0

    def test_matches_block_filter(self):
        bp = StreamingBandpass(fps=30.0)
        rng = np.random.default_rng(3)
        signal = 120.0 + rng.normal(0.0, 2.0, 200)
        streamed = np.array([bp.filter(float(v)) for v in signal])
        sos = bp._build_filter()
        block, _ = sosfilt(sos, signal, zi=sosfilt_zi(sos) * signal[0])
        assert np.allclose(streamed, block)

    def test_reset_reprimes_state(self):
        bp = StreamingBandpass(fps=30.0)
        first = [bp.filter(v) for v in (100.0, 104.0, 98.0)]
        bp.reset()
        assert [bp.filter(v) for v in (100.0, 104.0, 98.0)] == pytest.approx(first)


class TestInputConditioner:

    def test_always_returns_a_value(self):
        cond = InputConditioner()
        assert cond.filter(float("nan")) == 0.0
        out = cond.filter(120.0)
        assert math.isfinite(out)
        assert cond.filter(float("inf")) == out

    def test_non_finite_does_not_touch_state(self):
        a, b = InputConditioner(), InputConditioner()
        for v in (100.0, 102.0, float("nan"), 104.0):
            a.filter(v)
        for v in (100.0, 102.0, 104.0):
            b.filter(v)
        assert a.last_output == b.last_output

    def test_reset_reproduces_output(self):
        cond = InputConditioner()
        values = 100 + 10 * np.sin(np.arange(40) / 3.0)
        first = [cond.filter(float(v)) for v in values]
        cond.reset()
        cond.reset()
        second = [cond.filter(float(v)) for v in values]
        assert first == second

    def test_bandpass_stage_optional(self):
        cond = InputConditioner(FilterConfig(use_bandpass=True))
        for _ in range(60):
            out = cond.filter(150.0)
        assert abs(out) < 1e-6

    def test_without_kalman_is_moving_average(self):
        cond = InputConditioner(FilterConfig(use_kalman=False))
        outputs = [cond.filter(v) for v in (3.0, 6.0, 9.0)]
        assert outputs == pytest.approx([3.0, 4.5, 6.0])
