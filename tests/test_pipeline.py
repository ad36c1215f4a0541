"""
End-to-end tests for VitalSignsProcessor.
Run with:  pytest tests/test_pipeline.py
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.config import PipelineConfig
from ppg_vitals.models import ArrhythmiaType, RRBundle
from ppg_vitals.pipeline import VitalSignsProcessor
from ppg_vitals.risk import VitalSignsRisk
from ppg_vitals.source import SyntheticSource

FPS = 30.0
PERIOD_MS = 1000.0 / FPS


def _sine(n: int, period: float = 20.0, baseline: float = 100.0, amplitude: float = 10.0):
    i = np.arange(n)
    return baseline + amplitude * np.sin(2 * np.pi * i / period), i * PERIOD_MS


def _run(processor, values, times):
    return [processor.process_sample(float(v), float(t)) for v, t in zip(values, times)]


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestScenarios:

    def test_clean_sine_90_bpm(self):
        """120 samples of a 20-sample period at 30 Hz (≈ 90 BPM)."""
        processor = VitalSignsProcessor()
        snapshots = _run(processor, *_sine(120))
        last = snapshots[-1]
        assert 85 <= last.heart_rate <= 95
        assert last.arrhythmia_status == "NO ARRHYTHMIA|0"
        assert last.to_output()["arrhythmiaStatus"] == "NO ARRHYTHMIA|0"
        assert last.last_arrhythmia_event is None

    def test_clean_sine_vitals_in_range(self):
        processor = VitalSignsProcessor()
        last = _run(processor, *_sine(300))[-1]
        assert 85 <= last.spo2 <= 100
        assert last.pressure is not None
        assert last.systolic - last.diastolic >= 20
        assert last.signal_quality > 80

    def test_insufficient_data_sentinels(self):
        processor = VitalSignsProcessor()
        last = _run(processor, *_sine(10))[-1]
        assert last.spo2 == 0
        assert last.pressure is None
        assert last.to_output()["pressure"] == "--/--"
        assert last.arrhythmia_status == "CALIBRATING|0"
        assert last.heart_rate == 0

    def test_single_ectopic_beat_counts_once(self):
        source = SyntheticSource(bpm=72.0, fps=FPS, baseline=180.0, amplitude=6.0, ectopic_beats=[30])
        times, values = source.generate(40.0)
        processor = VitalSignsProcessor()
        snapshots = _run(processor, values, times)
        counts = [s.arrhythmia_count for s in snapshots]
        assert counts[-1] == 1
        assert counts.count(1) == len(counts) - counts.index(1)
        event = snapshots[-1].last_arrhythmia_event
        assert event is not None
        assert event.type is ArrhythmiaType.PAC
        assert snapshots[-1].arrhythmia_status == "ARRHYTHMIA DETECTED|1"


# ---------------------------------------------------------------------------
# Control surface
# ---------------------------------------------------------------------------

class TestControl:

    def test_reset_reproduces_baseline(self):
        values, times = _sine(200)
        processor = VitalSignsProcessor()
        first = _run(processor, values, times)
        processor.reset()
        processor.reset()
        second = _run(processor, values, times)
        assert first == second

    def test_reset_clears_state(self):
        processor = VitalSignsProcessor()
        _run(processor, *_sine(150))
        processor.reset()
        assert processor.buffer_fill_ratio == 0.0
        assert processor.snapshot.spo2 == 0
        assert processor.arrhythmia.is_learning
        assert processor.tracker.intervals == ()

    def test_calibrate_restarts_learning(self):
        processor = VitalSignsProcessor()
        _run(processor, *_sine(150))
        processor.calibrate(rmssd_threshold_ms=45.0)
        assert processor.arrhythmia.is_learning
        assert processor.arrhythmia.config.rmssd_threshold_ms == 45.0
        assert processor.contact.config.min_intensity == 90.0

    def test_independent_instances(self):
        a, b = VitalSignsProcessor(), VitalSignsProcessor()
        _run(a, *_sine(150))
        assert b.snapshot.heart_rate == 0
        assert b.buffer_fill_ratio == 0.0


# ---------------------------------------------------------------------------
# Boundary handling
# ---------------------------------------------------------------------------

class TestBoundary:

    def test_non_finite_sample_rejected(self):
        processor = VitalSignsProcessor()
        values, times = _sine(40)
        before = _run(processor, values, times)[-1]
        after = processor.process_sample(float("nan"), 40 * PERIOD_MS)
        assert after == before
        assert len(processor.filtered_values) == 40
        assert processor.process_sample(100.0, float("inf")) == before

    def test_malformed_sample_rejected(self):
        processor = VitalSignsProcessor()
        snapshot = processor.process_sample("bad", 0.0)
        assert snapshot == processor.snapshot
        assert len(processor.filtered_values) == 0

    def test_buffer_is_bounded(self):
        processor = VitalSignsProcessor(PipelineConfig(buffer_size=50))
        _run(processor, *_sine(200))
        assert len(processor.filtered_values) == 50
        assert processor.buffer_fill_ratio == 1.0

    def test_process_window_continues_timestamps(self):
        processor = VitalSignsProcessor()
        values, _ = _sine(60)
        first = processor.process_window(values[:30])
        second = processor.process_window(values[30:])
        assert first[-1].timestamp == pytest.approx(29 * PERIOD_MS)
        assert second[0].timestamp == pytest.approx(30 * PERIOD_MS)

    def test_process_window_length_mismatch(self):
        with pytest.raises(ValueError):
            VitalSignsProcessor().process_window([1.0, 2.0], [0.0])

    def test_clock_used_without_timestamp(self):
        ticks = iter(np.arange(10) * PERIOD_MS)
        processor = VitalSignsProcessor(clock=lambda: float(next(ticks)))
        snapshot = None
        for v in _sine(10)[0]:
            snapshot = processor.process_sample(float(v))
        assert snapshot.timestamp == pytest.approx(9 * PERIOD_MS)

    def test_throttle_keeps_every_sample(self):
        processor = VitalSignsProcessor(PipelineConfig(processing_interval_ms=150.0))
        snapshots = _run(processor, *_sine(90))
        assert len(processor.filtered_values) == 90
        # Between updates the previous estimates are re-issued.
        assert snapshots[61].spo2 == snapshots[60].spo2
        assert snapshots[61].timestamp > snapshots[60].timestamp


# ---------------------------------------------------------------------------
# Auxiliary inputs and risk
# ---------------------------------------------------------------------------

class TestAuxiliary:

    def test_external_rr_bundle(self):
        processor = VitalSignsProcessor()
        values, times = _sine(60)
        peak_time = 0.0
        snapshot = None
        for k, (v, t) in enumerate(zip(values, times)):
            bundle = None
            if k % 20 == 0 and k:
                peak_time = float(t)
                bundle = RRBundle(intervals=(750.0,) * (k // 20), last_peak_time=peak_time)
            snapshot = processor.process_sample(float(v), float(t), rr_bundle=bundle)
        assert snapshot.heart_rate == 80
        assert processor.arrhythmia.intervals == (750.0, 750.0)

    def test_risk_attached(self):
        risk = VitalSignsRisk()
        processor = VitalSignsProcessor(risk=risk)
        last = _run(processor, *_sine(300))[-1]
        assert last.risk is not None
        assert last.risk.heart_rate.label == "NORMAL"
        final = processor.final_risk()
        assert final.heart_rate.label == "NORMAL"

    def test_final_risk_is_repeatable(self):
        risk = VitalSignsRisk()
        processor = VitalSignsProcessor(risk=risk)
        _run(processor, *_sine(300))
        readings = len(risk._bpm), len(risk._pressure)
        assert processor.final_risk() == processor.final_risk()
        assert (len(risk._bpm), len(risk._pressure)) == readings

    def test_no_risk_without_aggregator(self):
        processor = VitalSignsProcessor()
        last = _run(processor, *_sine(30))[-1]
        assert last.risk is None
        assert processor.final_risk() is None
