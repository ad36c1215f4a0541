"""
Vital-signs pipeline.

Data flow
---------
raw sample → :class:`InputConditioner` → filtered ring buffer
→ {:class:`BeatDetector` / :class:`HeartbeatTracker`, :class:`SpO2Estimator`,
:class:`BloodPressureEstimator`} → :class:`VitalsSnapshot`.
RR intervals from the tracker (or from an external :class:`RRBundle`) feed
the :class:`ArrhythmiaClassifier`.  A caller-owned :class:`VitalSignsRisk`
may be attached to label every snapshot.

Every sample reaches the ring buffer and the beat detector.  With a
non-zero ``processing_interval_ms`` the estimators run at most once per
interval and the previous snapshot is re-issued in between.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, List, Optional, Sequence

import numpy as np

from .arrhythmia import ArrhythmiaClassifier
from .blood_pressure import BloodPressureEstimator
from .conditioning import InputConditioner
from .config import PipelineConfig
from .contact import ContactDetector, ContactStatus
from .errors import FailureBudget
from .heartbeat import BeatDetector, HeartbeatTracker
from .landmarks import detect_landmarks
from .models import FilteredSample, RRBundle, RiskAssessment, VitalsSnapshot
from .risk import VitalSignsRisk
from .spo2 import SpO2Estimator

logger = logging.getLogger(__name__)

ANALYSIS_WINDOW = 60        # ~2 s at 30 Hz, used for the signal-quality score
MAX_PIPELINE_FAILURES = 5


class VitalSignsProcessor:
    """
    Single-stream vital-signs estimator.

    Parameters
    ----------
    config:
        Parameters of every stage; see :class:`PipelineConfig`.
    risk:
        Optional risk aggregator owned by the caller.  When given, each
        snapshot carries a :class:`RiskAssessment`.
    clock:
        Millisecond clock used when :meth:`process_sample` gets no timestamp.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        risk: VitalSignsRisk | None = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.risk = risk
        self._clock = clock or (lambda: time.monotonic() * 1000.0)

        cfg = self.config
        self.conditioner = InputConditioner(cfg.filter)
        self.tracker = HeartbeatTracker(cfg.beats)
        self.beats = BeatDetector(cfg.beats, cfg.landmarks, self.tracker)
        self.arrhythmia = ArrhythmiaClassifier(cfg.arrhythmia)
        self.spo2 = SpO2Estimator(cfg.spo2)
        self.blood_pressure = BloodPressureEstimator(cfg.blood_pressure, cfg.landmarks)
        self.contact = ContactDetector(cfg.contact)

        self._buffer: Deque[FilteredSample] = deque(maxlen=cfg.buffer_size)
        self._failures = FailureBudget(MAX_PIPELINE_FAILURES)
        self._reset_state()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear every buffer and return all stages to their learning phase."""
        self.conditioner.reset()
        self.beats.reset()
        self.arrhythmia.reset()
        self.spo2.reset()
        self.blood_pressure.reset()
        self.contact.reset_to_default()
        self._buffer.clear()
        self._failures.clear()
        self._reset_state()
        logger.info("Vital-signs pipeline reset")

    def calibrate(self, **arrhythmia_overrides) -> None:
        """
        Re-run the learning phase.

        The contact detector widens its intensity band; the arrhythmia
        classifier restarts learning with any :class:`ArrhythmiaConfig`
        overrides passed as keyword arguments.
        """
        self.contact.calibrate()
        self.arrhythmia.calibrate(**arrhythmia_overrides)

    # ------------------------------------------------------------------
    # Sample processing
    # ------------------------------------------------------------------

    def process_sample(
        self,
        raw: float,
        timestamp: Optional[float] = None,
        rr_bundle: RRBundle | None = None,
    ) -> VitalsSnapshot:
        """
        Feed one raw intensity sample and return the current snapshot.

        A non-finite *raw* or *timestamp* is dropped at the boundary and the
        previous snapshot is returned unchanged.  Once an *rr_bundle* has
        been supplied, bundles replace the internal heartbeat tracker as the
        source of RR intervals and heart rate until :meth:`reset`.
        """
        now = self._clock() if timestamp is None else timestamp
        try:
            raw = float(raw)
            now = float(now)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed sample %r at %r", raw, timestamp)
            return self._snapshot
        if not (math.isfinite(raw) and math.isfinite(now)):
            logger.warning("Ignoring non-finite sample %r at %r", raw, now)
            return self._snapshot

        try:
            self._snapshot = self._update(raw, now, rr_bundle)
        except (ArithmeticError, ValueError) as exc:
            logger.warning("Pipeline update failed: %s", exc)
            if self._failures.charge():
                logger.info("Pipeline reset after %d failed updates", MAX_PIPELINE_FAILURES)
                self.reset()
            return self._snapshot
        self._failures.clear()
        return self._snapshot

    def process_window(
        self,
        values: Sequence[float] | np.ndarray,
        timestamps: Sequence[float] | np.ndarray | None = None,
    ) -> List[VitalsSnapshot]:
        """
        Feed a block of samples in order.

        Without *timestamps* the samples are spaced at the nominal frame
        period, continuing from the last processed timestamp.
        """
        if timestamps is None:
            period = 1000.0 / self.config.filter.fps
            start = 0.0 if self._last_timestamp is None else self._last_timestamp + period
            timestamps = start + period * np.arange(len(values))
        if len(timestamps) != len(values):
            raise ValueError("values and timestamps must have the same length")
        return [self.process_sample(v, t) for v, t in zip(values, timestamps)]

    def final_risk(self, now: Optional[float] = None) -> Optional[RiskAssessment]:
        """Final-read risk labels for the last snapshot (*None* without risk)."""
        if self.risk is None:
            return None
        now = self._snapshot.timestamp if now is None else now
        return self.risk.assess(self._snapshot, now, final=True)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> VitalsSnapshot:
        return self._snapshot

    @property
    def filtered_values(self) -> np.ndarray:
        return np.fromiter((s.value for s in self._buffer), dtype=np.float64, count=len(self._buffer))

    @property
    def buffer_fill_ratio(self) -> float:
        return len(self._buffer) / self._buffer.maxlen

    @property
    def contact_status(self) -> ContactStatus:
        return self._contact

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        self._snapshot = VitalsSnapshot()
        self._contact = ContactStatus(False, 0)
        self._last_timestamp: Optional[float] = None
        self._last_update: Optional[float] = None
        self._rr_bundle: Optional[RRBundle] = None

    def _update(self, raw: float, now: float, rr_bundle: RRBundle | None) -> VitalsSnapshot:
        value = self.conditioner.filter(raw)
        self._buffer.append(FilteredSample(now, value))
        self._last_timestamp = now
        self._contact = self.contact.update(raw, value, now)

        beat = self.beats.push(value, now)
        if rr_bundle is not None:
            self._rr_bundle = rr_bundle
            self.arrhythmia.update_intervals(rr_bundle, now)
        elif beat is not None and self._rr_bundle is None:
            self.arrhythmia.update_intervals(self.tracker.rr_bundle(), now)

        interval = self.config.processing_interval_ms
        if (
            interval > 0
            and self._last_update is not None
            and now - self._last_update < interval
        ):
            return replace(
                self._snapshot,
                timestamp=now,
                finger_detected=self._contact.finger_detected,
            )
        self._last_update = now
        return self._analyse(now)

    def _analyse(self, now: float) -> VitalsSnapshot:
        values = self.filtered_values
        times = np.fromiter((s.timestamp for s in self._buffer), dtype=np.float64, count=len(self._buffer))

        learning = self.arrhythmia.is_learning
        arrhythmia = self.arrhythmia.detect(now)

        if learning and not self.spo2.is_calibrated:
            self.spo2.add_calibration_value(self.spo2.calculate_raw(values))
        elif not self.arrhythmia.is_learning and not self.spo2.is_calibrated:
            self.spo2.calibrate()
        spo2 = self.spo2.calculate(values)
        pressure = self.blood_pressure.calculate(values, times)

        quality = detect_landmarks(values[-ANALYSIS_WINDOW:], self.config.landmarks.margin).quality
        snapshot = VitalsSnapshot(
            timestamp=now,
            spo2=spo2,
            pressure=pressure,
            arrhythmia_label=arrhythmia.label,
            arrhythmia_count=arrhythmia.count,
            last_arrhythmia_event=self.arrhythmia.last_event,
            heart_rate=self._heart_rate(),
            signal_quality=int(round(quality)),
            finger_detected=self._contact.finger_detected,
        )
        if self.risk is not None:
            snapshot = replace(snapshot, risk=self.risk.assess(snapshot, now))
        return snapshot

    def _heart_rate(self) -> int:
        if self._rr_bundle is None:
            return self.tracker.bpm
        intervals = [v for v in self._rr_bundle.intervals if v > 0]
        if not intervals:
            return 0
        recent = intervals[-self.config.beats.bpm_intervals:]
        return int(round(60000.0 / float(np.mean(recent))))
