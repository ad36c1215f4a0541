"""
Blood-pressure estimate from PPG morphology and beat timing.

Algorithm
---------
1. Detect peaks / valleys in the window; at least two of each are needed,
   otherwise there is no reading.
2. Transit-time proxy: peak-to-peak time deltas, reduced to their mean (or a
   recency-weighted mean) and clamped to ``[ptt_min_ms, ptt_max_ms]``.
   If the deltas are too dispersed (std / mean above ``max_ptt_dispersion``)
   the whole update is rejected.
3. Relative amplitude: mean peak-minus-valley height over the window mean.
4. Arterial-stiffness score in [0, 10] from the pulse shape (dicrotic notch
   depth and steepest decay).
5. ``systolic = S0 − k1·(PTT − PTT_ref) + k2·(A − A_ref) + k3·(stiffness − 5)``;
   diastolic analogous with its own coefficients.  Both are clamped to their
   bands and the pulse pressure is kept within
   ``[min_differential, max_differential]``.
6. Exponentially decaying average over the last ``history_size`` readings.

A window that cannot be measured yields *None* ("no reading") instead of
the previous value: a stale pressure is more misleading than a gap.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Sequence, Tuple

import numpy as np

from .config import BloodPressureConfig, LandmarkConfig
from .errors import DegenerateInputError, FailureBudget
from .landmarks import detect_landmarks, pulse_amplitudes
from .models import BloodPressureReading

logger = logging.getLogger(__name__)

DEFAULT_STIFFNESS = 5.0


def clamp_pressure(
    systolic: float,
    diastolic: float,
    config: BloodPressureConfig | None = None,
) -> Tuple[int, int]:
    """
    Round and clamp a systolic/diastolic pair.

    Systolic is clamped to its band first; diastolic is then held inside its
    own band and within the allowed pulse-pressure differential.
    """
    cfg = config or BloodPressureConfig()
    s = int(round(min(max(systolic, cfg.systolic_range[0]), cfg.systolic_range[1])))
    lo = max(s - cfg.max_differential, cfg.diastolic_range[0])
    hi = min(s - cfg.min_differential, cfg.diastolic_range[1])
    if lo > hi:
        lo = hi
    d = int(round(min(max(diastolic, lo), hi)))
    return s, d


def arterial_stiffness(
    values: Sequence[float] | np.ndarray,
    peaks: Sequence[int],
    valleys: Sequence[int],
    notch_weight: float = 0.6,
    decay_weight: float = 0.4,
) -> float:
    """
    Stiffness score in [0, 10]; 5 when the pulse shape cannot be read.

    Each peak-to-peak pulse (up to five) is normalised to [0, 1]:

    - Notch score: a secondary local minimum in the later part of the
      descending limb marks elastic arteries.  Score ``10 − 10·depth``
      where depth is measured from the top; 10 when no notch is found.
    - Decay score: steepest sample-to-sample drop over the first 70 % of
      the pulse, × 50, capped at 10.
    """
    if len(peaks) < 3 or len(valleys) < 3:
        return DEFAULT_STIFFNESS
    data = np.asarray(values, dtype=np.float64)

    pulses = []
    for start, end in list(zip(peaks[:-1], peaks[1:]))[:5]:
        if 5 < end - start < 50:
            pulse = data[start:end]
            span = float(pulse.max() - pulse.min())
            if span > 0:
                pulses.append((pulse - pulse.min()) / span)
    if not pulses:
        return DEFAULT_STIFFNESS

    notch_scores = []
    decay_scores = []
    for pulse in pulses:
        foot = int(np.argmin(pulse))
        notch_score = 10.0
        for i in range(max(1, foot // 3), foot - 1):
            if pulse[i] < pulse[i - 1] and pulse[i] < pulse[i + 1]:
                notch_score = 10.0 - 10.0 * (1.0 - float(pulse[i]))
                break
        notch_scores.append(notch_score)

        decay = pulse[: max(2, int(len(pulse) * 0.7))]
        max_drop = float(np.max(decay[:-1] - decay[1:])) if decay.size > 1 else 0.0
        decay_scores.append(min(10.0, max(0.0, max_drop) * 50.0))

    return float(notch_weight * np.mean(notch_scores) + decay_weight * np.mean(decay_scores))


class BloodPressureEstimator:
    """
    Systolic / diastolic estimator.

    ``calculate(values, timestamps)`` never raises; it returns a
    :class:`BloodPressureReading` or *None* when no reading is possible.
    """

    def __init__(
        self,
        config: BloodPressureConfig | None = None,
        landmarks: LandmarkConfig | None = None,
    ) -> None:
        self.config = config or BloodPressureConfig()
        self.margin = (landmarks or LandmarkConfig()).margin
        self._history: Deque[Tuple[float, float]] = deque(maxlen=self.config.history_size)
        self._failures = FailureBudget(self.config.max_consecutive_failures)
        self.reset()

    def reset(self) -> None:
        self._history.clear()
        self._failures.clear()
        self._last: Optional[BloodPressureReading] = None
        self._rng = np.random.default_rng(self.config.jitter_seed)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate(
        self,
        values: Sequence[float] | np.ndarray,
        timestamps: Sequence[float] | np.ndarray | None = None,
    ) -> Optional[BloodPressureReading]:
        cfg = self.config
        data = np.asarray(values, dtype=np.float64)[-cfg.window:]
        times = None
        if timestamps is not None:
            times = np.asarray(timestamps, dtype=np.float64)[-cfg.window:]
        self._last = None
        if data.size < cfg.min_samples:
            return None

        try:
            pair = self._estimate(data, times)
        except DegenerateInputError as exc:
            logger.debug("Blood-pressure update rejected: %s", exc)
            if self._failures.charge():
                logger.info("Blood-pressure estimator reset after %d degenerate updates", cfg.max_consecutive_failures)
                self.reset()
            return None
        self._failures.clear()
        if pair is None:
            return None

        self._history.append(pair)
        weights = cfg.history_decay ** np.arange(len(self._history) - 1, -1, -1, dtype=np.float64)
        history = np.asarray(self._history, dtype=np.float64)
        systolic, diastolic = (weights @ history) / weights.sum()

        if cfg.jitter_mmhg > 0:
            systolic += self._rng.uniform(-cfg.jitter_mmhg, cfg.jitter_mmhg)
            diastolic += self._rng.uniform(-cfg.jitter_mmhg, cfg.jitter_mmhg) * 0.6

        self._last = BloodPressureReading(*clamp_pressure(systolic, diastolic, cfg))
        return self._last

    @property
    def last_reading(self) -> Optional[BloodPressureReading]:
        """Reading from the most recent update (*None* if it produced none)."""
        return self._last

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _estimate(self, data: np.ndarray, times: Optional[np.ndarray]) -> Optional[Tuple[float, float]]:
        cfg = self.config
        if not np.all(np.isfinite(data)):
            raise DegenerateInputError("non-finite samples in window")
        landmarks = detect_landmarks(data, self.margin)
        peaks, valleys = landmarks.peaks, landmarks.valleys
        if len(peaks) < 2 or len(valleys) < 2:
            return None

        if times is not None and times.size == data.size:
            peak_times = times[list(peaks)]
        else:
            peak_times = np.asarray(peaks, dtype=np.float64) * cfg.sample_period_ms
        deltas = np.diff(peak_times)
        mean_delta = float(deltas.mean())
        if mean_delta <= 0:
            raise DegenerateInputError("non-increasing peak times")
        dispersion = float(deltas.std()) / mean_delta
        if dispersion > cfg.max_ptt_dispersion:
            logger.debug("PTT dispersion %.2f too high", dispersion)
            return None

        if cfg.recency_weighted_ptt:
            ptt = float(np.average(deltas, weights=np.arange(1, deltas.size + 1)))
        else:
            ptt = mean_delta
        ptt = min(max(ptt, cfg.ptt_min_ms), cfg.ptt_max_ms)

        dc = float(data.mean())
        if dc <= 0:
            raise DegenerateInputError(f"DC component is {dc:.3g}")
        amplitude = float(pulse_amplitudes(data, peaks, valleys).mean()) / dc
        stiffness = arterial_stiffness(data, peaks, valleys, cfg.notch_weight, cfg.decay_weight)

        d_ptt = ptt - cfg.ptt_reference_ms
        d_amp = amplitude - cfg.amplitude_reference
        d_stiff = stiffness - DEFAULT_STIFFNESS
        systolic = (
            cfg.systolic_base
            - cfg.systolic_ptt_coeff * d_ptt
            + cfg.systolic_amplitude_coeff * d_amp
            + cfg.systolic_stiffness_coeff * d_stiff
        )
        diastolic = (
            cfg.diastolic_base
            - cfg.diastolic_ptt_coeff * d_ptt
            + cfg.diastolic_amplitude_coeff * d_amp
            + cfg.diastolic_stiffness_coeff * d_stiff
        )
        return clamp_pressure(systolic, diastolic, cfg)
