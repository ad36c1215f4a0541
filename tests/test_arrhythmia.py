"""
Unit tests for ArrhythmiaClassifier.
Run with:  pytest tests/test_arrhythmia.py
"""

from __future__ import annotations

import pytest

from ppg_vitals.arrhythmia import ArrhythmiaClassifier
from ppg_vitals.config import ArrhythmiaConfig
from ppg_vitals.models import ArrhythmiaType, RRBundle


def _count_learning(n: int = 8) -> ArrhythmiaConfig:
    return ArrhythmiaConfig(learning_intervals=n, learning_period_ms=None)


class _Feeder:
    """Adds intervals to a classifier, advancing time, and collects results."""

    def __init__(self, classifier: ArrhythmiaClassifier) -> None:
        self.classifier = classifier
        self.now = 0.0
        self.results = []

    def feed(self, *intervals, amplitude=None):
        for interval in intervals:
            self.now += interval
            self.classifier.add_interval(interval, amplitude, now=self.now)
            self.results.append(self.classifier.detect(self.now))
        return self.results[-1]

    @property
    def events(self):
        return [r for r in self.results if r.detected]


# ---------------------------------------------------------------------------
# Learning phase
# ---------------------------------------------------------------------------

class TestLearningPhase:

    def test_calibrating_before_learning_ends(self):
        clf = ArrhythmiaClassifier()
        result = clf.detect(0.0)
        assert result.status == "CALIBRATING|0"
        assert clf.is_learning

    def test_learning_ends_by_count(self):
        clf = ArrhythmiaClassifier(_count_learning(5))
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 4)
        assert clf.is_learning
        feeder.feed(800.0)
        assert not clf.is_learning

    def test_learning_ends_by_time(self):
        clf = ArrhythmiaClassifier(ArrhythmiaConfig(learning_intervals=100, learning_period_ms=3000.0))
        clf.detect(0.0)
        assert clf.detect(2999.0).label == "CALIBRATING"
        assert clf.detect(3000.0).label == "NO ARRHYTHMIA"

    def test_steady_never_reverts_without_reset(self):
        clf = ArrhythmiaClassifier(_count_learning(3))
        _Feeder(clf).feed(800.0, 800.0, 800.0)
        clf.detect(10_000.0)
        assert not clf.is_learning
        clf.reset()
        assert clf.is_learning
        assert clf.status == "CALIBRATING|0"


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

class TestDetection:

    def test_constant_rhythm_never_signals(self):
        clf = ArrhythmiaClassifier()
        feeder = _Feeder(clf)
        for interval in (600.0, 800.0, 1000.0):
            clf.reset()
            feeder.results.clear()
            feeder.feed(*[interval] * 60)
            assert feeder.events == []
            assert clf.status == "NO ARRHYTHMIA|0"
            assert feeder.results[-1].rmssd == pytest.approx(0.0)

    def test_single_premature_beat_counts_once(self):
        clf = ArrhythmiaClassifier()
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 30)
        assert feeder.events == []

        result = feeder.feed(400.0)
        assert result.detected
        assert result.count == 1
        assert result.status == "ARRHYTHMIA DETECTED|1"

        # The anomaly is still in the window for the next few updates.
        for dt in (33.0, 66.0, 100.0, 500.0):
            assert not clf.detect(feeder.now + dt).detected

        feeder.feed(1200.0)
        feeder.feed(*[800.0] * 10)
        assert len(feeder.events) == 1
        assert clf.count == 1
        assert clf.status == "ARRHYTHMIA DETECTED|1"

    def test_premature_beat_classified_as_pac(self):
        clf = ArrhythmiaClassifier()
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 30)
        feeder.feed(400.0, 1200.0)
        event = clf.last_event
        assert event is not None
        assert event.type is ArrhythmiaType.PAC
        assert event.rr_variation > 0.2
        assert event.rmssd > 30.0

    def test_cooldown_blocks_second_event(self):
        clf = ArrhythmiaClassifier(_count_learning())
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 30)
        first = feeder.feed(400.0)
        assert first.detected
        t0 = feeder.now

        clf.add_interval(800.0, now=t0 + 100.0)
        assert not clf.detect(t0 + 100.0).detected     # re-arms
        clf.add_interval(400.0, now=t0 + 200.0)
        assert not clf.detect(t0 + 200.0).detected     # cooling down
        second = clf.detect(t0 + 1200.0)
        assert second.detected
        assert second.count == 2

    def test_af_pattern(self):
        clf = ArrhythmiaClassifier(_count_learning())
        feeder = _Feeder(clf)
        feeder.feed(*[500.0, 1100.0] * 6)
        assert feeder.events
        assert feeder.events[0].event.type is ArrhythmiaType.AF

    def test_pvc_needs_tall_premature_pulse(self):
        clf = ArrhythmiaClassifier(_count_learning())
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 10, amplitude=1.0)
        assert feeder.feed(500.0, amplitude=2.0).detected
        feeder.feed(1100.0, amplitude=1.0)
        assert clf.last_event.type is ArrhythmiaType.PVC

    def test_without_amplitudes_pvc_check_skipped(self):
        clf = ArrhythmiaClassifier(_count_learning())
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 10)
        feeder.feed(500.0, 1100.0)
        assert clf.last_event.type is ArrhythmiaType.PAC

    def test_event_cap(self):
        clf = ArrhythmiaClassifier(ArrhythmiaConfig(learning_intervals=8, learning_period_ms=None, max_events=1))
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 20)
        feeder.feed(400.0, 1200.0)
        feeder.feed(*[800.0] * 5)
        feeder.feed(400.0, 1200.0)
        assert clf.count == 1

    def test_too_few_intervals_gives_no_result(self):
        clf = ArrhythmiaClassifier(_count_learning(3))
        result = _Feeder(clf).feed(800.0, 400.0, 1200.0)
        assert result.status == "NO ARRHYTHMIA|0"
        assert not result.detected


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

class TestInput:

    def test_non_physiological_intervals_discarded(self):
        clf = ArrhythmiaClassifier()
        assert not clf.add_interval(250.0)
        assert not clf.add_interval(2500.0)
        assert not clf.add_interval(float("nan"))
        assert clf.add_interval(800.0)
        assert clf.intervals == (800.0,)

    def test_bundle_only_consumed_when_peak_time_changes(self):
        clf = ArrhythmiaClassifier()
        bundle = RRBundle(intervals=(800.0, 820.0), last_peak_time=1620.0)
        assert clf.update_intervals(bundle, now=1620.0) == 1
        assert clf.update_intervals(bundle, now=1650.0) == 0
        assert clf.intervals == (820.0,)

    def test_empty_bundle_ignored(self):
        clf = ArrhythmiaClassifier()
        assert clf.update_intervals(RRBundle()) == 0

    def test_calibrate_restarts_learning_and_keeps_count(self):
        clf = ArrhythmiaClassifier()
        feeder = _Feeder(clf)
        feeder.feed(*[800.0] * 30)
        feeder.feed(400.0)
        clf.calibrate(rmssd_threshold_ms=40.0)
        assert clf.is_learning
        assert clf.count == 1
        assert clf.config.rmssd_threshold_ms == 40.0
        assert clf.status == "CALIBRATING|1"
