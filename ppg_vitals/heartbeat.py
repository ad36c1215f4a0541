"""
Heartbeat and RR-interval tracking.

:class:`BeatDetector` watches the conditioned signal sample by sample and
confirms a systolic peak once ``k`` later samples are available.
:class:`HeartbeatTracker` turns accepted peak timestamps into RR intervals
and a smoothed heart rate.

Tracker states
--------------
``IDLE`` – no peak seen yet.
``ARMED`` – one peak seen, no interval yet.
``TRACKING`` – at least one interval measured (valid or not).
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Deque, Optional, Tuple

import numpy as np

from .config import BeatConfig, LandmarkConfig
from .landmarks import is_strict_peak
from .models import BeatEvent, RRBundle

logger = logging.getLogger(__name__)


class TrackerState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    TRACKING = "tracking"


class HeartbeatTracker:
    """
    Bounded RR-interval history built from peak timestamps.

    Intervals outside ``[min_rr_ms, max_rr_ms]`` are discarded rather than
    clamped.  The last-peak time always moves to the newest peak so one bad
    interval does not corrupt the next one.
    """

    def __init__(self, config: BeatConfig | None = None) -> None:
        self.config = config or BeatConfig()
        self._intervals: Deque[float] = deque(maxlen=self.config.history_size)
        self._amplitudes: Deque[float] = deque(maxlen=self.config.history_size)
        self.reset()

    def reset(self) -> None:
        self._intervals.clear()
        self._amplitudes.clear()
        self.state = TrackerState.IDLE
        self._last_peak_time: Optional[float] = None
        self._has_amplitudes = False
        self._last_beat: Optional[BeatEvent] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_peak(self, timestamp: float, amplitude: Optional[float] = None) -> Optional[BeatEvent]:
        """
        Register a peak at *timestamp* (ms).

        Returns the :class:`BeatEvent` for the interval it closes, or *None*
        for the first peak and for out-of-range intervals.
        """
        previous = self._last_peak_time
        self._last_peak_time = timestamp
        if previous is None:
            self.state = TrackerState.ARMED
            return None

        self.state = TrackerState.TRACKING
        interval = timestamp - previous
        if not (self.config.min_rr_ms <= interval <= self.config.max_rr_ms):
            logger.debug("Discarding RR interval %.0f ms", interval)
            return None

        self._intervals.append(interval)
        self._amplitudes.append(amplitude if amplitude is not None else 0.0)
        if amplitude is not None:
            self._has_amplitudes = True
        self._last_beat = BeatEvent(timestamp, 60000.0 / interval)
        return self._last_beat

    @property
    def bpm(self) -> int:
        """``round(60000 / mean(recent intervals))``; 0 without intervals."""
        if not self._intervals:
            return 0
        recent = list(self._intervals)[-self.config.bpm_intervals:]
        return int(round(60000.0 / float(np.mean(recent))))

    @property
    def intervals(self) -> Tuple[float, ...]:
        return tuple(self._intervals)

    @property
    def last_peak_time(self) -> Optional[float]:
        return self._last_peak_time

    @property
    def last_beat(self) -> Optional[BeatEvent]:
        return self._last_beat

    def rr_bundle(self) -> RRBundle:
        return RRBundle(
            intervals=tuple(self._intervals),
            last_peak_time=self._last_peak_time,
            amplitudes=tuple(self._amplitudes) if self._has_amplitudes else None,
        )


class BeatDetector:
    """
    Streaming systolic-peak detector feeding a :class:`HeartbeatTracker`.

    A candidate sample becomes a peak when it is strictly greater than its
    ``k`` neighbours on each side, rises at least ``min_prominence_ratio``
    of the recent signal range above the recent minimum, and is at least
    ``min_peak_spacing_ms`` after the previous accepted peak.
    """

    def __init__(
        self,
        config: BeatConfig | None = None,
        landmarks: LandmarkConfig | None = None,
        tracker: HeartbeatTracker | None = None,
    ) -> None:
        self.config = config or BeatConfig()
        self.margin = (landmarks or LandmarkConfig()).margin
        self.tracker = tracker or HeartbeatTracker(self.config)
        span = 2 * self.margin + 1
        self._values: Deque[float] = deque(maxlen=span)
        self._times: Deque[float] = deque(maxlen=span)
        self._recent: Deque[float] = deque(maxlen=max(self.config.prominence_window, span))
        self._last_accepted: Optional[float] = None

    def reset(self) -> None:
        self._values.clear()
        self._times.clear()
        self._recent.clear()
        self._last_accepted = None
        self.tracker.reset()

    def push(self, value: float, timestamp: float) -> Optional[BeatEvent]:
        """Feed one conditioned sample; return a beat when one is confirmed."""
        self._values.append(value)
        self._times.append(timestamp)
        self._recent.append(value)
        if len(self._values) < self._values.maxlen:
            return None
        if not is_strict_peak(self._values, self.margin):
            return None

        peak_value = self._values[self.margin]
        peak_time = self._times[self.margin]
        low = min(self._recent)
        span = max(self._recent) - low
        if span <= 0 or peak_value - low < self.config.min_prominence_ratio * span:
            return None
        if (
            self._last_accepted is not None
            and peak_time - self._last_accepted < self.config.min_peak_spacing_ms
        ):
            return None

        self._last_accepted = peak_time
        return self.tracker.add_peak(peak_time, amplitude=peak_value - low)

    @property
    def bpm(self) -> int:
        return self.tracker.bpm
