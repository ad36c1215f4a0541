"""
Temporal risk classification of heart rate, SpO2 and blood pressure.

Each vital keeps a timestamped history limited to the measurement window.
A real-time label is only issued when the recent values (stability window)
sit inside one band: at least ``min_stable_samples`` samples, of which at
least ``stable_fraction`` fall in the band.  Otherwise the label is
``EVALUATING...``.  A final read averages the trailing ``final_window_ms``
and classifies the average once, falling back to the most frequent stable
label seen within the measurement window.  High-pressure bands have no
upper limit on a final read.

Each monitoring session owns its own :class:`VitalSignsRisk`; nothing is
shared between instances.
"""

from __future__ import annotations

import logging
import math
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Iterable, Optional, Sequence, Tuple

from .config import RiskConfig
from .models import (
    BloodPressureReading,
    RiskAssessment,
    RiskSegment,
    VitalsSnapshot,
    parse_pressure,
)
from .errors import VitalsFormatError

logger = logging.getLogger(__name__)

RED = "#ea384c"
ORANGE = "#F97316"
WHITE = "#FFFFFF"
BLUE = "#0EA5E9"

NO_READING = RiskSegment(WHITE, "")
EVALUATING = RiskSegment(WHITE, "EVALUATING...")

Range = Tuple[float, float]


@dataclass(frozen=True)
class Band:
    low: float
    high: float
    segment: RiskSegment

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


@dataclass(frozen=True)
class PressureBand:
    systolic: Range
    diastolic: Range
    segment: RiskSegment

    def contains(self, systolic: float, diastolic: float) -> bool:
        return (
            self.systolic[0] <= systolic <= self.systolic[1]
            and self.diastolic[0] <= diastolic <= self.diastolic[1]
        )


HEART_RATE_BANDS: Tuple[Band, ...] = (
    Band(140, 300, RiskSegment(RED, "TACHYCARDIA")),
    Band(110, 139, RiskSegment(ORANGE, "MILD TACHYCARDIA")),
    Band(50, 109, RiskSegment(WHITE, "NORMAL")),
    Band(40, 49, RiskSegment(ORANGE, "BRADYCARDIA")),
    Band(1, 39, RiskSegment(RED, "SEVERE BRADYCARDIA")),
)

SPO2_BANDS: Tuple[Band, ...] = (
    Band(0, 90, RiskSegment(RED, "RESPIRATORY INSUFFICIENCY")),
    Band(91, 92, RiskSegment(ORANGE, "MILD RESPIRATORY INSUFFICIENCY")),
    Band(93, 100, RiskSegment(BLUE, "NORMAL")),
)

PRESSURE_BANDS: Tuple[PressureBand, ...] = (
    PressureBand((150, 300), (100, 200), RiskSegment(RED, "HIGH PRESSURE")),
    PressureBand((140, 149), (90, 99), RiskSegment(ORANGE, "MILD HIGH PRESSURE")),
    PressureBand((114, 126), (76, 84), RiskSegment(BLUE, "NORMAL PRESSURE")),
    PressureBand((100, 110), (60, 70), RiskSegment(ORANGE, "MILD LOW PRESSURE")),
)

# The final read uses open upper limits for the high bands.
FINAL_PRESSURE_BANDS: Tuple[PressureBand, ...] = (
    PressureBand((150, math.inf), (100, math.inf), PRESSURE_BANDS[0].segment),
    PressureBand((140, math.inf), (90, math.inf), PRESSURE_BANDS[1].segment),
) + PRESSURE_BANDS[2:]


@dataclass(frozen=True)
class Reading:
    timestamp: float
    value: float
    secondary: float = 0.0


def is_stable(
    history: Sequence[Reading],
    value_range: Range,
    now: float,
    config: RiskConfig | None = None,
) -> bool:
    """
    True when the readings inside the stability window lie in *value_range*.

    Requires at least ``min_stable_samples`` readings in the window and at
    least ``stable_fraction`` of them within ``[lo, hi]``.
    """
    cfg = config or RiskConfig()
    lo, hi = value_range
    return _stable(history, lambda r: lo <= r.value <= hi, now, cfg)


def _stable(history, predicate, now: float, cfg: RiskConfig) -> bool:
    oldest = now - cfg.stability_window_ms
    recent = [r for r in history if r.timestamp >= oldest]
    if len(recent) < cfg.min_stable_samples:
        return False
    inside = sum(1 for r in recent if predicate(r))
    return inside >= cfg.stable_fraction * len(recent)


def _most_frequent(history: Iterable[Tuple[float, RiskSegment]]) -> RiskSegment:
    segments = [segment for _, segment in history]
    if not segments:
        return NO_READING
    counts = Counter(s.label for s in segments)
    label, _ = counts.most_common(1)[0]
    logger.debug("Final read fell back to most frequent segment %r", label)
    return next(s for s in segments if s.label == label)


class VitalSignsRisk:
    """
    Risk labels for one monitoring session.

    Parameters
    ----------
    config:
        Window lengths and stability rule; see :class:`RiskConfig`.
    clock:
        Millisecond clock used when a call does not pass ``now``.
    """

    def __init__(self, config: RiskConfig | None = None, clock=None) -> None:
        self.config = config or RiskConfig()
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self._bpm: Deque[Reading] = deque()
        self._spo2: Deque[Reading] = deque()
        self._pressure: Deque[Reading] = deque()
        self._bpm_segments: Deque[Tuple[float, RiskSegment]] = deque()
        self._pressure_segments: Deque[Tuple[float, RiskSegment]] = deque()
        self.reset()

    def reset(self) -> None:
        self._bpm.clear()
        self._spo2.clear()
        self._pressure.clear()
        self._bpm_segments.clear()
        self._pressure_segments.clear()
        self._last_bpm: Optional[float] = None
        self._last_systolic: Optional[float] = None
        self._last_diastolic: Optional[float] = None

    # ------------------------------------------------------------------
    # Per-vital classification
    # ------------------------------------------------------------------

    # A final read only looks at the recorded history; the value passed in
    # is neither smoothed nor recorded, so repeated final reads agree.

    def bpm_risk(self, bpm: float, now: Optional[float] = None, final: bool = False) -> RiskSegment:
        if bpm <= 0:
            return NO_READING
        now = self._now(now)
        if final:
            average = self._average(self._bpm, now)
            if average is not None:
                band = _find_band(HEART_RATE_BANDS, round(average[0]))
                if band is not None:
                    return band.segment
            if self._bpm_segments:
                return _most_frequent(self._bpm_segments)
            return self._current_bpm(now)

        self._last_bpm = self._smooth(bpm, self._last_bpm)
        self._record(self._bpm, Reading(now, round(self._last_bpm)), now)
        segment = self._current_bpm(now)
        if segment is not EVALUATING:
            self._remember(self._bpm_segments, segment, now)
        return segment

    def spo2_risk(self, spo2: float, now: Optional[float] = None, final: bool = False) -> RiskSegment:
        if spo2 <= 0:
            return NO_READING
        now = self._now(now)
        if final:
            average = self._average(self._spo2, now)
            if average is not None:
                band = _find_band(SPO2_BANDS, round(average[0]))
                if band is not None:
                    return band.segment
        else:
            self._record(self._spo2, Reading(now, round(spo2)), now)

        for band in SPO2_BANDS:
            if is_stable(self._spo2, (band.low, band.high), now, self.config):
                return band.segment
        return EVALUATING

    def pressure_risk(
        self,
        pressure: str | BloodPressureReading | None,
        now: Optional[float] = None,
        final: bool = False,
    ) -> RiskSegment:
        if isinstance(pressure, str):
            try:
                pressure = parse_pressure(pressure)
            except VitalsFormatError:
                return EVALUATING
        if pressure is None:
            return NO_READING
        if pressure.systolic <= 0 or pressure.diastolic <= 0:
            return EVALUATING

        now = self._now(now)
        if final:
            average = self._average(self._pressure, now)
            if average is not None:
                systolic, diastolic = round(average[0]), round(average[1])
                for band in FINAL_PRESSURE_BANDS:
                    if band.contains(systolic, diastolic):
                        return band.segment
            if self._pressure_segments:
                return _most_frequent(self._pressure_segments)
            return self._current_pressure(now)

        self._last_systolic = self._smooth(pressure.systolic, self._last_systolic)
        self._last_diastolic = self._smooth(pressure.diastolic, self._last_diastolic)
        self._record(
            self._pressure,
            Reading(now, round(self._last_systolic), round(self._last_diastolic)),
            now,
        )
        segment = self._current_pressure(now)
        if segment is not EVALUATING:
            self._remember(self._pressure_segments, segment, now)
        return segment

    def assess(self, snapshot: VitalsSnapshot, now: Optional[float] = None, final: bool = False) -> RiskAssessment:
        """Classify every vital carried by *snapshot*."""
        now = snapshot.timestamp if now is None else now
        return RiskAssessment(
            heart_rate=self.bpm_risk(snapshot.heart_rate, now, final),
            spo2=self.spo2_risk(snapshot.spo2, now, final),
            pressure=self.pressure_risk(snapshot.pressure, now, final),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def _smooth(self, value: float, last: Optional[float]) -> float:
        if last is None:
            return float(value)
        return last + self.config.smoothing_factor * (value - last)

    def _current_bpm(self, now: float) -> RiskSegment:
        for band in HEART_RATE_BANDS:
            if is_stable(self._bpm, (band.low, band.high), now, self.config):
                return band.segment
        return EVALUATING

    def _current_pressure(self, now: float) -> RiskSegment:
        for band in PRESSURE_BANDS:
            if _stable(self._pressure, lambda r: band.contains(r.value, r.secondary), now, self.config):
                return band.segment
        return EVALUATING

    def _record(self, history: Deque[Reading], reading: Reading, now: float) -> None:
        while history and now - history[0].timestamp >= self.config.measurement_window_ms:
            history.popleft()
        history.append(reading)

    def _remember(self, segments: Deque[Tuple[float, RiskSegment]], segment: RiskSegment, now: float) -> None:
        while segments and now - segments[0][0] >= self.config.measurement_window_ms:
            segments.popleft()
        segments.append((now, segment))

    def _average(self, history: Sequence[Reading], now: float) -> Optional[Tuple[float, float]]:
        recent = [r for r in history if now - r.timestamp < self.config.final_window_ms]
        if not recent:
            return None
        n = len(recent)
        return sum(r.value for r in recent) / n, sum(r.secondary for r in recent) / n


def _find_band(bands: Sequence[Band], value: float) -> Optional[Band]:
    for band in bands:
        if band.contains(value):
            return band
    return None
