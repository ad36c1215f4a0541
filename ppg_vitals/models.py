"""
Value types passed between pipeline stages, and the output string codecs.

Everything here is immutable except :class:`LearningPhase`, the small
learning → steady state machine shared by the calibrating estimators.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import VitalsFormatError

PRESSURE_PLACEHOLDER = "--/--"
PRESSURE_ZERO = "0/0"

STATUS_CALIBRATING = "CALIBRATING"
STATUS_NORMAL = "NO ARRHYTHMIA"
STATUS_DETECTED = "ARRHYTHMIA DETECTED"


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    timestamp: float        # ms
    raw_intensity: float


@dataclass(frozen=True)
class FilteredSample:
    timestamp: float        # ms
    value: float


@dataclass(frozen=True)
class BeatEvent:
    timestamp: float
    instantaneous_bpm: float


@dataclass(frozen=True)
class RRBundle:
    """
    RR intervals and peak time produced by a heartbeat tracker.

    ``amplitudes`` is *None* when the producer does not measure peak
    heights; consumers then skip amplitude-based morphology checks.
    """

    intervals: Tuple[float, ...] = ()
    last_peak_time: Optional[float] = None
    amplitudes: Optional[Tuple[float, ...]] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RRBundle":
        """Accept the ``{intervals, lastPeakTime, amplitudes?}`` shape."""
        amplitudes = data.get("amplitudes")
        return cls(
            intervals=tuple(float(v) for v in data.get("intervals") or ()),
            last_peak_time=data.get("lastPeakTime", data.get("last_peak_time")),
            amplitudes=None if amplitudes is None else tuple(float(a) for a in amplitudes),
        )


# ---------------------------------------------------------------------------
# Learning / steady phase
# ---------------------------------------------------------------------------

class CalibrationPhase(Enum):
    LEARNING = "learning"
    STEADY = "steady"


class LearningPhase:
    """
    One-way learning → steady transition.

    The phase ends when ``min_count`` observations have been recorded or,
    if ``period_ms`` is set, when that much time has elapsed since the
    first call to :meth:`observe`.  Only :meth:`reset` returns it to
    learning.
    """

    def __init__(self, min_count: int, period_ms: Optional[float] = None) -> None:
        self.min_count = min_count
        self.period_ms = period_ms
        self.reset()

    def reset(self) -> None:
        self.phase = CalibrationPhase.LEARNING
        self._started_at: Optional[float] = None
        self._count = 0

    @property
    def is_learning(self) -> bool:
        return self.phase is CalibrationPhase.LEARNING

    def observe(self, now: Optional[float], new_items: int = 0) -> bool:
        """
        Record progress; return *True* on the call that ends learning.

        *now* may be *None* when the caller has no clock; only the count
        advances then.
        """
        if not self.is_learning:
            return False
        if self._started_at is None and now is not None:
            self._started_at = now
        self._count += new_items
        elapsed_done = (
            self.period_ms is not None
            and now is not None
            and self._started_at is not None
            and now - self._started_at >= self.period_ms
        )
        if self._count >= self.min_count or elapsed_done:
            self.phase = CalibrationPhase.STEADY
            return True
        return False


# ---------------------------------------------------------------------------
# Arrhythmia
# ---------------------------------------------------------------------------

class ArrhythmiaType(Enum):
    NONE = "NONE"
    IRREGULAR = "IRREGULAR"
    PAC = "PAC"     # premature atrial contraction
    PVC = "PVC"     # premature ventricular contraction
    AF = "AF"       # atrial-fibrillation-like


@dataclass(frozen=True)
class ArrhythmiaEvent:
    timestamp: float
    rmssd: float
    rr_variation: float
    type: ArrhythmiaType = ArrhythmiaType.IRREGULAR

    def to_output(self) -> Dict[str, float]:
        return {
            "timestamp": self.timestamp,
            "rmssd": self.rmssd,
            "rrVariation": self.rr_variation,
        }


def format_arrhythmia_status(label: str, count: int) -> str:
    return f"{label}|{count}"


def parse_arrhythmia_status(text: str) -> Tuple[str, int]:
    """Split ``"<LABEL>|<count>"`` into ``(label, count)``."""
    label, sep, count = text.rpartition("|")
    if not sep or not label:
        raise VitalsFormatError(f"Malformed arrhythmia status: {text!r}")
    try:
        value = int(count)
    except ValueError as exc:
        raise VitalsFormatError(f"Malformed arrhythmia count: {text!r}") from exc
    if value < 0:
        raise VitalsFormatError(f"Negative arrhythmia count: {text!r}")
    return label, value


# ---------------------------------------------------------------------------
# Blood pressure
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BloodPressureReading:
    systolic: int
    diastolic: int

    def __str__(self) -> str:
        return format_pressure(self)


def format_pressure(reading: Optional[BloodPressureReading]) -> str:
    """``"S/D"`` for a reading, the ``"--/--"`` placeholder for *None*."""
    if reading is None:
        return PRESSURE_PLACEHOLDER
    return f"{reading.systolic}/{reading.diastolic}"


def parse_pressure(text: str) -> Optional[BloodPressureReading]:
    """
    Inverse of :func:`format_pressure`.

    Both placeholders (``"--/--"`` and ``"0/0"``) map to *None*.
    """
    text = text.strip()
    if text in (PRESSURE_PLACEHOLDER, PRESSURE_ZERO):
        return None
    parts = text.split("/")
    if len(parts) != 2:
        raise VitalsFormatError(f"Malformed pressure: {text!r}")
    try:
        systolic, diastolic = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise VitalsFormatError(f"Malformed pressure: {text!r}") from exc
    return BloodPressureReading(systolic, diastolic)


def is_pressure_unrealistic(text: str) -> bool:
    """True for placeholders, malformed text and implausible pairs."""
    try:
        reading = parse_pressure(text)
    except VitalsFormatError:
        return True
    if reading is None:
        return True
    s, d = reading.systolic, reading.diastolic
    return not (60 <= s <= 300 and 30 <= d <= 200 and s > d)


# ---------------------------------------------------------------------------
# Risk
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RiskSegment:
    color: str
    label: str


@dataclass(frozen=True)
class RiskAssessment:
    heart_rate: RiskSegment
    spo2: RiskSegment
    pressure: RiskSegment


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VitalsSnapshot:
    """Per-sample output of :class:`~ppg_vitals.pipeline.VitalSignsProcessor`."""

    timestamp: float = 0.0
    spo2: int = 0
    pressure: Optional[BloodPressureReading] = None
    arrhythmia_label: str = STATUS_CALIBRATING
    arrhythmia_count: int = 0
    last_arrhythmia_event: Optional[ArrhythmiaEvent] = None
    heart_rate: int = 0
    signal_quality: int = 0
    finger_detected: bool = False
    risk: Optional[RiskAssessment] = field(default=None, compare=False)

    @property
    def systolic(self) -> int:
        return self.pressure.systolic if self.pressure else 0

    @property
    def diastolic(self) -> int:
        return self.pressure.diastolic if self.pressure else 0

    @property
    def arrhythmia_status(self) -> str:
        return format_arrhythmia_status(self.arrhythmia_label, self.arrhythmia_count)

    def to_output(self) -> Dict[str, Any]:
        """The record handed to the display layer."""
        event = self.last_arrhythmia_event
        return {
            "spo2": self.spo2,
            "pressure": format_pressure(self.pressure),
            "arrhythmiaStatus": self.arrhythmia_status,
            "lastArrhythmiaEvent": event.to_output() if event else None,
        }

    @classmethod
    def from_output(cls, data: Mapping[str, Any]) -> "VitalsSnapshot":
        label, count = parse_arrhythmia_status(data["arrhythmiaStatus"])
        raw_event = data.get("lastArrhythmiaEvent")
        event = None
        if raw_event is not None:
            event = ArrhythmiaEvent(
                timestamp=float(raw_event["timestamp"]),
                rmssd=float(raw_event["rmssd"]),
                rr_variation=float(raw_event["rrVariation"]),
            )
        spo2 = data.get("spo2", 0)
        if not isinstance(spo2, (int, float)) or not math.isfinite(spo2):
            raise VitalsFormatError(f"Malformed spo2: {spo2!r}")
        return cls(
            timestamp=event.timestamp if event else 0.0,
            spo2=int(round(spo2)),
            pressure=parse_pressure(data["pressure"]),
            arrhythmia_label=label,
            arrhythmia_count=count,
            last_arrhythmia_event=event,
        )
