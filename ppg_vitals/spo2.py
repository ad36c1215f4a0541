"""
Oxygen-saturation estimate from a single-channel PPG window.

Algorithm
---------
1. AC = max − min of the window, DC = mean.
2. Reject the update (keep the last accepted value, 0 if none) when the
   signal is degenerate (DC ≤ 0, non-finite, zero variance) or too weak
   (perfusion index AC/DC below ``min_perfusion_index``, normalised variance
   outside its band).
3. R = PI × ``ratio_scale``; SpO2_raw = A − B·R, clamped to
   [``min_spo2``, ``max_spo2``].
4. Keep the last ``raw_buffer_size`` raw estimates, drop values outside
   median ± 1.5·IQR, average the rest.
5. Exponential smoothing against the previous output.

Notes
-----
- One wavelength cannot separate oxy- from deoxy-haemoglobin; the curve is
  an empirical approximation and results are indicative, not clinical.
- An optional one-time calibration offset is derived from values collected
  while the pipeline is in its learning phase.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Sequence

import numpy as np

from .config import SpO2Config
from .errors import DegenerateInputError, FailureBudget

logger = logging.getLogger(__name__)


def iqr_mean(values: Sequence[float]) -> float:
    """Mean of *values* after discarding those outside median ± 1.5·IQR."""
    data = np.asarray(values, dtype=np.float64)
    median = float(np.median(data))
    q1, q3 = np.percentile(data, [25, 75])
    spread = 1.5 * float(q3 - q1)
    kept = data[(data >= median - spread) & (data <= median + spread)]
    if kept.size == 0:
        return median
    return float(kept.mean())


class SpO2Estimator:
    """
    Smoothed, outlier-robust SpO2 estimator.

    ``calculate(window)`` never raises; it returns an integer percentage or
    0 when no estimate has been accepted yet.
    """

    def __init__(self, config: SpO2Config | None = None) -> None:
        self.config = config or SpO2Config()
        self._raw_buffer: Deque[float] = deque(maxlen=self.config.raw_buffer_size)
        self._calibration_values: Deque[float] = deque(maxlen=self.config.calibration_buffer_size)
        self._failures = FailureBudget(self.config.max_consecutive_failures)
        self.reset()

    def reset(self) -> None:
        self._raw_buffer.clear()
        self._calibration_values.clear()
        self._failures.clear()
        self._smoothed: Optional[float] = None
        self._output = 0
        self._offset = 0.0
        self._calibrated = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate(self, window: Sequence[float] | np.ndarray) -> int:
        """Update from the latest conditioned samples and return SpO2 (%)."""
        cfg = self.config
        values = np.asarray(window, dtype=np.float64)[-cfg.window:]
        if values.size < cfg.min_samples:
            return self._output

        try:
            raw = self._estimate(values)
        except DegenerateInputError as exc:
            logger.debug("SpO2 update rejected: %s", exc)
            if self._failures.charge():
                logger.info("SpO2 estimator reset after %d degenerate updates", cfg.max_consecutive_failures)
                self.reset()
            return self._output
        self._failures.clear()
        if raw is None:
            return self._output

        if self._calibrated:
            raw += self._offset
        raw = self._clamp(raw)
        self._raw_buffer.append(raw)
        robust = iqr_mean(self._raw_buffer)

        if self._smoothed is None:
            self._smoothed = robust
        else:
            self._smoothed = cfg.ema_weight * robust + (1.0 - cfg.ema_weight) * self._smoothed

        value = int(round(self._clamp(self._smoothed)))
        if self._output == 0 or abs(value - self._output) >= cfg.display_step:
            self._output = value
        return self._output

    def calculate_raw(self, window: Sequence[float] | np.ndarray) -> float:
        """
        Single uncalibrated, unsmoothed estimate for *window*.

        Returns 0.0 when the window is too short or the signal is rejected.
        Does not touch the estimator state.
        """
        values = np.asarray(window, dtype=np.float64)[-self.config.window:]
        if values.size < self.config.min_samples:
            return 0.0
        try:
            raw = self._estimate(values)
        except DegenerateInputError:
            return 0.0
        return 0.0 if raw is None else round(self._clamp(raw))

    def add_calibration_value(self, value: float) -> None:
        if value > 0 and not self._calibrated:
            self._calibration_values.append(float(value))

    def calibrate(self) -> bool:
        """
        Derive the one-time calibration offset.

        Returns *True* once calibrated.  Calling again after a successful
        calibration is a no-op.
        """
        cfg = self.config
        if self._calibrated:
            return True
        if len(self._calibration_values) < cfg.calibration_min_values:
            return False
        baseline = float(np.median(self._calibration_values))
        self._offset = float(np.clip(
            cfg.calibration_reference - baseline,
            -cfg.calibration_max_offset,
            cfg.calibration_max_offset,
        ))
        self._calibrated = True
        logger.info("SpO2 calibrated: baseline=%.1f offset=%+.1f", baseline, self._offset)
        return True

    @property
    def last_value(self) -> int:
        return self._output

    @property
    def is_calibrated(self) -> bool:
        return self._calibrated

    @property
    def offset(self) -> float:
        return self._offset

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _estimate(self, values: np.ndarray) -> Optional[float]:
        """Raw SpO2 for *values*; *None* when the signal is too weak."""
        cfg = self.config
        if not np.all(np.isfinite(values)):
            raise DegenerateInputError("non-finite samples in window")
        dc = float(values.mean())
        if dc <= 0:
            raise DegenerateInputError(f"DC component is {dc:.3g}")
        variance = float(values.var())
        if variance == 0:
            raise DegenerateInputError("zero variance")

        normalized_variance = variance / (dc * dc)
        if not cfg.min_normalized_variance <= normalized_variance <= cfg.max_normalized_variance:
            return None

        ac = float(values.max() - values.min())
        perfusion_index = ac / dc
        if not cfg.min_perfusion_index <= perfusion_index <= cfg.max_perfusion_index:
            return None

        r = perfusion_index * cfg.ratio_scale
        return cfg.curve_a - cfg.curve_b * r

    def _clamp(self, value: float) -> float:
        return min(self.config.max_spo2, max(self.config.min_spo2, value))
