"""
Per-sample input conditioning.

Stages (applied in order)
-------------------------
1. Simple moving average over the last ``sma_window`` raw values
   (suppresses sensor shot noise).
2. Scalar Kalman filter with fixed process / measurement variances
   (smooth, low-lag estimate).
3. Optional streaming Butterworth band-pass (off by default).

All stages keep only fixed-size state, so a steady-state call performs no
buffer growth.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Deque, Optional

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from .config import FilterConfig

logger = logging.getLogger(__name__)


class MovingAverage:
    """Running mean of the last *window* values."""

    def __init__(self, window: int = 3) -> None:
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = window
        self._values: Deque[float] = deque(maxlen=window)
        self._sum = 0.0

    def filter(self, value: float) -> float:
        if len(self._values) == self.window:
            self._sum -= self._values[0]
        self._values.append(value)
        self._sum += value
        return self._sum / len(self._values)

    def reset(self) -> None:
        self._values.clear()
        self._sum = 0.0


class KalmanFilter:
    """
    One-dimensional Kalman filter for a random-walk signal.

    Parameters
    ----------
    process_variance:
        Q – how far the true value is expected to move between samples.
    measurement_variance:
        R – sensor noise.  Smaller R relative to Q means the estimate
        follows the measurement more closely.
    """

    def __init__(self, process_variance: float = 0.1, measurement_variance: float = 0.01) -> None:
        self.q = process_variance
        self.r = measurement_variance
        self.reset()

    def filter(self, measurement: float) -> float:
        if self._x is None:
            # Seed with the first measurement instead of ramping up from zero.
            self._x = measurement
        self._p = self._p + self.q
        k = self._p / (self._p + self.r)
        self._x = self._x + k * (measurement - self._x)
        self._p = (1.0 - k) * self._p
        return self._x

    @property
    def estimate(self) -> Optional[float]:
        return self._x

    @property
    def uncertainty(self) -> float:
        return self._p

    def reset(self) -> None:
        self._x: Optional[float] = None
        self._p = 1.0


class StreamingBandpass:
    """
    Butterworth band-pass evaluated one sample at a time.

    The filter is designed as second-order sections and run through
    ``sosfilt`` with its state carried between calls.  The state is primed
    from the first sample so a DC offset does not ring.
    """

    def __init__(
        self,
        fps: float = 30.0,
        low_hz: float = 0.75,
        high_hz: float = 4.0,
        order: int = 2,
    ) -> None:
        self.fps = fps
        self.low_hz = low_hz
        self.high_hz = high_hz
        self.order = order
        self._sos = self._build_filter()
        self._zi: Optional[np.ndarray] = None

    def filter(self, value: float) -> float:
        if self._zi is None:
            self._zi = sosfilt_zi(self._sos) * value
        y, self._zi = sosfilt(self._sos, [value], zi=self._zi)
        return float(y[0])

    def reset(self) -> None:
        self._zi = None

    def _build_filter(self) -> np.ndarray:
        """Construct the Butterworth band-pass (SOS form)."""
        nyq = self.fps / 2.0
        low = self.low_hz / nyq
        high = self.high_hz / nyq
        # Clamp to valid range
        low = max(1e-4, min(low, 0.999))
        high = max(low + 1e-4, min(high, 0.999))
        return butter(self.order, [low, high], btype="bandpass", output="sos")


class InputConditioner:
    """
    Denoise raw intensity samples.

    ``filter(raw)`` is called once per incoming sample and always returns a
    value.  A non-finite input leaves the state untouched and returns the
    previous output (0.0 before the first finite sample).
    """

    def __init__(self, config: FilterConfig | None = None) -> None:
        self.config = config or FilterConfig()
        self._sma = MovingAverage(self.config.sma_window)
        self._kalman: Optional[KalmanFilter] = None
        if self.config.use_kalman:
            self._kalman = KalmanFilter(
                self.config.process_variance, self.config.measurement_variance
            )
        self._bandpass: Optional[StreamingBandpass] = None
        if self.config.use_bandpass:
            self._bandpass = StreamingBandpass(
                fps=self.config.fps,
                low_hz=self.config.bandpass_low_hz,
                high_hz=self.config.bandpass_high_hz,
                order=self.config.bandpass_order,
            )
        self._last_output = 0.0

    def filter(self, raw: float) -> float:
        if not math.isfinite(raw):
            logger.warning("Ignoring non-finite sample %r", raw)
            return self._last_output
        value = self._sma.filter(raw)
        if self._kalman is not None:
            value = self._kalman.filter(value)
        if self._bandpass is not None:
            value = self._bandpass.filter(value)
        self._last_output = value
        return value

    @property
    def last_output(self) -> float:
        return self._last_output

    def reset(self) -> None:
        self._sma.reset()
        if self._kalman is not None:
            self._kalman.reset()
        if self._bandpass is not None:
            self._bandpass.reset()
        self._last_output = 0.0
