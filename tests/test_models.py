"""
Unit tests for value types, output codecs and configuration.
Run with:  pytest tests/test_models.py
"""

from __future__ import annotations

import pytest

from ppg_vitals.config import ArrhythmiaConfig, PipelineConfig
from ppg_vitals.errors import FailureBudget, VitalsFormatError
from ppg_vitals.models import (
    ArrhythmiaEvent,
    BloodPressureReading,
    LearningPhase,
    RRBundle,
    VitalsSnapshot,
    format_pressure,
    is_pressure_unrealistic,
    parse_arrhythmia_status,
    parse_pressure,
)


# ---------------------------------------------------------------------------
# Output codecs
# ---------------------------------------------------------------------------

class TestPressureCodec:

    def test_format(self):
        assert format_pressure(BloodPressureReading(121, 79)) == "121/79"
        assert format_pressure(None) == "--/--"

    def test_placeholders_parse_to_none(self):
        assert parse_pressure("--/--") is None
        assert parse_pressure("0/0") is None

    def test_parse(self):
        assert parse_pressure(" 130/85 ") == BloodPressureReading(130, 85)

    @pytest.mark.parametrize("text", ["", "120", "120/80/60", "abc/def", "12O/80"])
    def test_malformed(self, text):
        with pytest.raises(VitalsFormatError):
            parse_pressure(text)

    @pytest.mark.parametrize("text,expected", [
        ("120/80", False),
        ("--/--", True),
        ("0/0", True),
        ("garbage", True),
        ("50/40", True),
        ("320/90", True),
        ("120/20", True),
        ("90/90", True),
    ])
    def test_unrealistic(self, text, expected):
        assert is_pressure_unrealistic(text) is expected


class TestArrhythmiaStatusCodec:

    def test_parse(self):
        assert parse_arrhythmia_status("ARRHYTHMIA DETECTED|3") == ("ARRHYTHMIA DETECTED", 3)

    @pytest.mark.parametrize("text", ["NO ARRHYTHMIA", "|2", "NO ARRHYTHMIA|x", "NO ARRHYTHMIA|-1"])
    def test_malformed(self, text):
        with pytest.raises(VitalsFormatError):
            parse_arrhythmia_status(text)


class TestVitalsSnapshot:

    def test_output_record(self):
        event = ArrhythmiaEvent(timestamp=5000.0, rmssd=72.5, rr_variation=0.45)
        snapshot = VitalsSnapshot(
            timestamp=5000.0,
            spo2=97,
            pressure=BloodPressureReading(125, 82),
            arrhythmia_label="ARRHYTHMIA DETECTED",
            arrhythmia_count=1,
            last_arrhythmia_event=event,
        )
        assert snapshot.to_output() == {
            "spo2": 97,
            "pressure": "125/82",
            "arrhythmiaStatus": "ARRHYTHMIA DETECTED|1",
            "lastArrhythmiaEvent": {"timestamp": 5000.0, "rmssd": 72.5, "rrVariation": 0.45},
        }

    def test_round_trip(self):
        snapshot = VitalsSnapshot(
            spo2=95,
            pressure=BloodPressureReading(118, 77),
            arrhythmia_label="NO ARRHYTHMIA",
            arrhythmia_count=4,
        )
        parsed = VitalsSnapshot.from_output(snapshot.to_output())
        assert (parsed.systolic, parsed.diastolic) == (118, 77)
        assert parsed.arrhythmia_count == 4
        assert parsed.arrhythmia_status == snapshot.arrhythmia_status

    def test_round_trip_without_reading(self):
        parsed = VitalsSnapshot.from_output(VitalsSnapshot().to_output())
        assert parsed.pressure is None
        assert parsed.arrhythmia_status == "CALIBRATING|0"
        assert parsed.last_arrhythmia_event is None

    def test_bad_spo2_rejected(self):
        record = VitalsSnapshot().to_output()
        record["spo2"] = float("nan")
        with pytest.raises(VitalsFormatError):
            VitalsSnapshot.from_output(record)


class TestRRBundle:

    def test_from_mapping(self):
        bundle = RRBundle.from_mapping({"intervals": [800, 810], "lastPeakTime": 1610})
        assert bundle.intervals == (800.0, 810.0)
        assert bundle.last_peak_time == 1610
        assert bundle.amplitudes is None

    def test_amplitudes(self):
        bundle = RRBundle.from_mapping({"intervals": [800], "lastPeakTime": None, "amplitudes": [1, 2]})
        assert bundle.amplitudes == (1.0, 2.0)


# ---------------------------------------------------------------------------
# Learning phase and failure budget
# ---------------------------------------------------------------------------

class TestLearningPhase:

    def test_by_count(self):
        phase = LearningPhase(min_count=3)
        assert not phase.observe(None, 2)
        assert phase.observe(None, 1)
        assert not phase.is_learning
        assert not phase.observe(None, 1)

    def test_by_time(self):
        phase = LearningPhase(min_count=100, period_ms=2000.0)
        phase.observe(1000.0)
        assert phase.is_learning
        assert phase.observe(3000.0)

    def test_reset(self):
        phase = LearningPhase(min_count=1)
        phase.observe(None, 1)
        phase.reset()
        assert phase.is_learning


class TestFailureBudget:

    def test_trips_at_limit(self):
        budget = FailureBudget(3)
        assert not budget.charge()
        assert not budget.charge()
        assert budget.charge()
        assert budget.count == 0

    def test_clear(self):
        budget = FailureBudget(2)
        budget.charge()
        budget.clear()
        assert not budget.charge()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestPipelineConfig:

    def test_defaults(self):
        cfg = PipelineConfig()
        assert cfg.buffer_size == 300
        assert cfg.arrhythmia.cooldown_ms == 1000.0
        assert cfg.blood_pressure.systolic_range == (80.0, 190.0)

    def test_from_dict(self):
        cfg = PipelineConfig.from_dict({
            "processing_interval_ms": 120,
            "arrhythmia": {"rmssd_threshold_ms": 40},
            "blood_pressure": {"systolic_range": [90, 180]},
        })
        assert cfg.processing_interval_ms == 120
        assert cfg.arrhythmia == ArrhythmiaConfig(rmssd_threshold_ms=40)
        assert cfg.blood_pressure.systolic_range == (90, 180)
        assert cfg.spo2 == PipelineConfig().spo2

    @pytest.mark.parametrize("data", [{"nope": 1}, {"spo2": {"nope": 1}}])
    def test_unknown_keys(self, data):
        with pytest.raises(ValueError):
            PipelineConfig.from_dict(data)
