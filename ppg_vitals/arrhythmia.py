"""
Arrhythmia classification from RR-interval statistics.

Algorithm
---------
1. Learning phase: intervals are collected, nothing is reported
   (status ``CALIBRATING``).  It ends after ``learning_intervals`` intervals
   or ``learning_period_ms`` after the first observation, whichever is first.
2. Steady phase, once ``min_intervals`` intervals are available:

   - RMSSD = sqrt(mean(diff(RR)²))
   - rrVariation = |RR_last − mean(RR)| / mean(RR)

   An event is raised when both exceed their thresholds, the cooldown since
   the previous event has elapsed, and the detector is armed.  Raising an
   event disarms it; it re-arms when rrVariation drops back under the
   threshold, so one irregular episode counts once.
3. The event is typed by morphology: AF-like irregularity, a premature
   ventricular beat (short / long with a tall premature pulse), or a
   premature atrial beat (short then long).  Anything else is
   ``IRREGULAR``.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from typing import Deque, Optional, Sequence

import numpy as np

from .config import ArrhythmiaConfig
from .models import (
    STATUS_CALIBRATING,
    STATUS_DETECTED,
    STATUS_NORMAL,
    ArrhythmiaEvent,
    ArrhythmiaType,
    LearningPhase,
    RRBundle,
    format_arrhythmia_status,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArrhythmiaResult:
    label: str
    count: int
    detected: bool = False
    event: Optional[ArrhythmiaEvent] = None
    rmssd: float = 0.0
    rr_variation: float = 0.0

    @property
    def status(self) -> str:
        return format_arrhythmia_status(self.label, self.count)


class ArrhythmiaClassifier:
    """
    Learning-then-steady RR-interval analyser.

    Parameters
    ----------
    config:
        Thresholds and buffer sizes; see :class:`ArrhythmiaConfig`.
    """

    def __init__(self, config: ArrhythmiaConfig | None = None) -> None:
        self.config = config or ArrhythmiaConfig()
        self._intervals: Deque[float] = deque(maxlen=self.config.history_size)
        self._amplitudes: Deque[float] = deque(maxlen=self.config.history_size)
        self._phase = LearningPhase(self.config.learning_intervals, self.config.learning_period_ms)
        self.reset()

    def reset(self) -> None:
        """Return to the learning phase with an empty history."""
        self._intervals.clear()
        self._amplitudes.clear()
        self._phase.reset()
        self._has_amplitudes = False
        self._bundle_peak_time: Optional[float] = None
        self._count = 0
        self._armed = True
        self._last_event_time: Optional[float] = None
        self._last_event: Optional[ArrhythmiaEvent] = None
        self._pending_intervals = 0
        self._now: Optional[float] = None

    def calibrate(self, **overrides) -> None:
        """
        Re-run the learning phase, optionally with adjusted thresholds.

        Keyword arguments are :class:`ArrhythmiaConfig` fields.  The interval
        history and event counter are kept.
        """
        if overrides:
            self.config = replace(self.config, **overrides)
        self._phase = LearningPhase(self.config.learning_intervals, self.config.learning_period_ms)
        self._armed = True
        logger.info("Arrhythmia learning phase restarted")

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def add_interval(
        self,
        interval: float,
        amplitude: Optional[float] = None,
        now: Optional[float] = None,
    ) -> bool:
        """
        Append one RR interval (ms).  Returns *False* when it is discarded
        as non-physiological.
        """
        if now is not None:
            self._now = now
        if not math.isfinite(interval) or not (
            self.config.min_rr_ms <= interval <= self.config.max_rr_ms
        ):
            return False
        self._intervals.append(float(interval))
        self._amplitudes.append(float(amplitude) if amplitude is not None else 0.0)
        if amplitude is not None:
            self._has_amplitudes = True
        self._pending_intervals += 1
        if self._phase.observe(self._now, 1):
            logger.info("Arrhythmia learning phase complete (%d intervals)", len(self._intervals))
        return True

    def update_intervals(self, bundle: RRBundle, now: Optional[float] = None) -> int:
        """
        Consume an externally produced RR bundle.

        The newest interval is taken whenever ``bundle.last_peak_time``
        changes.  Returns the number of intervals accepted (0 or 1).
        """
        if not bundle.intervals or bundle.last_peak_time is None:
            return 0
        if bundle.last_peak_time == self._bundle_peak_time:
            return 0
        self._bundle_peak_time = bundle.last_peak_time
        amplitude = bundle.amplitudes[-1] if bundle.amplitudes else None
        return int(self.add_interval(bundle.intervals[-1], amplitude, now))

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def detect(self, now: float) -> ArrhythmiaResult:
        """Evaluate the current history at time *now* (ms)."""
        self._now = now
        if self._phase.observe(now):
            logger.info("Arrhythmia learning phase complete (%d intervals)", len(self._intervals))
        if self._phase.is_learning:
            return ArrhythmiaResult(STATUS_CALIBRATING, self._count)

        label = STATUS_DETECTED if self._count > 0 else STATUS_NORMAL
        if len(self._intervals) < max(self.config.min_intervals, 2):
            return ArrhythmiaResult(label, self._count)

        rr = np.fromiter(self._intervals, dtype=np.float64)
        rmssd = float(np.sqrt(np.mean(np.diff(rr) ** 2)))
        mean_rr = float(rr.mean())
        variation = abs(float(rr[-1]) - mean_rr) / mean_rr
        new_data = self._pending_intervals > 0
        self._pending_intervals = 0

        irregular = (
            rmssd > self.config.rmssd_threshold_ms
            and variation > self.config.rr_variation_threshold
        )
        if variation <= self.config.rr_variation_threshold:
            self._armed = True
        elif new_data and not self._armed:
            self._refine_last_event(rr, rmssd)

        cooled = (
            self._last_event_time is None
            or now - self._last_event_time >= self.config.cooldown_ms
        )
        if not (irregular and self._armed and cooled and self._count < self.config.max_events):
            return ArrhythmiaResult(label, self._count, rmssd=rmssd, rr_variation=variation)

        event = ArrhythmiaEvent(now, rmssd, variation, self._classify(rr, rmssd))
        self._count += 1
        self._armed = False
        self._last_event_time = now
        self._last_event = event
        logger.info(
            "Arrhythmia %s detected: RMSSD=%.1f ms variation=%.2f (count=%d)",
            event.type.value, rmssd, variation, self._count,
        )
        return ArrhythmiaResult(
            STATUS_DETECTED, self._count, detected=True, event=event,
            rmssd=rmssd, rr_variation=variation,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_learning(self) -> bool:
        return self._phase.is_learning

    @property
    def count(self) -> int:
        return self._count

    @property
    def last_event(self) -> Optional[ArrhythmiaEvent]:
        return self._last_event

    @property
    def intervals(self) -> tuple:
        return tuple(self._intervals)

    @property
    def status(self) -> str:
        if self._phase.is_learning:
            label = STATUS_CALIBRATING
        else:
            label = STATUS_DETECTED if self._count > 0 else STATUS_NORMAL
        return format_arrhythmia_status(label, self._count)

    # ------------------------------------------------------------------
    # Morphology
    # ------------------------------------------------------------------

    def _classify(self, rr: np.ndarray, rmssd: float) -> ArrhythmiaType:
        if self._is_af(rr, rmssd):
            return ArrhythmiaType.AF
        recent = rr[-self.config.min_intervals:]
        if self._has_amplitudes:
            amps = np.fromiter(self._amplitudes, dtype=np.float64)[-len(recent):]
            if self._is_pvc(recent, amps):
                return ArrhythmiaType.PVC
        if self._is_pac(recent):
            return ArrhythmiaType.PAC
        return ArrhythmiaType.IRREGULAR

    def _refine_last_event(self, rr: np.ndarray, rmssd: float) -> None:
        """Re-type the open episode once the compensatory beat arrives."""
        event = self._last_event
        if event is None or event.type is not ArrhythmiaType.IRREGULAR:
            return
        kind = self._classify(rr, rmssd)
        if kind is not ArrhythmiaType.IRREGULAR:
            self._last_event = replace(event, type=kind)
            logger.debug("Arrhythmia event reclassified as %s", kind.value)

    def _is_af(self, rr: np.ndarray, rmssd: float) -> bool:
        cfg = self.config
        diffs = np.abs(np.diff(rr))
        if diffs.size == 0:
            return False
        mean_abs_variation = float(diffs.mean()) / float(rr.mean())
        irregular = int(np.count_nonzero(diffs > cfg.af_irregular_diff_ms))
        return (
            rmssd > cfg.af_rmssd_threshold_ms
            and mean_abs_variation > cfg.af_variation_threshold
            and irregular >= cfg.af_irregular_ratio * diffs.size
        )

    def _is_pac(self, rr: Sequence[float]) -> bool:
        cfg = self.config
        for i in range(2, len(rr)):
            prev2, prev1, current = rr[i - 2], rr[i - 1], rr[i]
            if (
                prev2 > cfg.pac_min_prev_ms
                and prev1 < cfg.pac_short_ratio * prev2
                and current > cfg.pac_long_ratio * prev1
            ):
                return True
        return False

    def _is_pvc(self, rr: np.ndarray, amplitudes: np.ndarray) -> bool:
        cfg = self.config
        nonzero = amplitudes[amplitudes > 0]
        if rr.size < 3 or nonzero.size == 0:
            return False
        avg_amp = float(nonzero.mean())
        total = float(rr.sum())
        for i in range(rr.size - 1):
            current, following = rr[i], rr[i + 1]
            avg_normal = (total - current) / (rr.size - 1)
            if (
                current < cfg.pvc_short_ratio * avg_normal
                and following > cfg.pvc_long_ratio * avg_normal
                and amplitudes[i] > cfg.pvc_amplitude_ratio * avg_amp
            ):
                return True
        return False
