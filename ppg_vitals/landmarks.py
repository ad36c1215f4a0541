"""
Waveform landmark detection (systolic peaks and valleys).

A sample is a peak when it is strictly greater than each of its ``k``
neighbours on both sides; valleys use the symmetric rule.  Comparing the
full neighbourhood rather than the immediate neighbours rejects isolated
single-sample spikes, at the cost of missing beats closer together than
``k`` samples.  Minimum beat spacing is enforced by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view


class LandmarkKind(Enum):
    PEAK = "peak"
    VALLEY = "valley"


@dataclass(frozen=True)
class Landmark:
    index: int
    kind: LandmarkKind
    amplitude: float


@dataclass(frozen=True)
class LandmarkSet:
    peaks: Tuple[int, ...]
    valleys: Tuple[int, ...]
    quality: float
    values: Tuple[float, ...] = ()

    @property
    def landmarks(self) -> List[Landmark]:
        """Peaks and valleys merged in index order."""
        items = [Landmark(i, LandmarkKind.PEAK, self.values[i]) for i in self.peaks]
        items += [Landmark(i, LandmarkKind.VALLEY, self.values[i]) for i in self.valleys]
        return sorted(items, key=lambda lm: lm.index)


def detect_landmarks(window: Sequence[float] | np.ndarray, margin: int = 3) -> LandmarkSet:
    """
    Find peaks and valleys in *window*.

    Parameters
    ----------
    window:
        Conditioned samples, oldest first.
    margin:
        ``k`` – neighbours compared on each side.  The first and last ``k``
        samples can never be landmarks.

    Returns
    -------
    LandmarkSet
        Indices are relative to *window*.  Empty when the window is shorter
        than ``2k + 1`` samples.
    """
    values = np.asarray(window, dtype=np.float64)
    span = 2 * margin + 1
    if margin < 1 or values.size < span:
        return LandmarkSet((), (), 0.0, tuple(values.tolist()))

    windows = sliding_window_view(values, span)
    centre = windows[:, margin]
    others = np.delete(windows, margin, axis=1)
    peak_mask = centre > others.max(axis=1)
    valley_mask = centre < others.min(axis=1)

    peaks = tuple(int(i) + margin for i in np.flatnonzero(peak_mask))
    valleys = tuple(int(i) + margin for i in np.flatnonzero(valley_mask))
    quality = signal_quality(values, peaks, valleys)
    return LandmarkSet(peaks, valleys, quality, tuple(values.tolist()))


def is_strict_peak(window: Sequence[float], centre: int) -> bool:
    """True when ``window[centre]`` exceeds every other value in *window*."""
    target = window[centre]
    return all(v < target for i, v in enumerate(window) if i != centre)


def pulse_amplitudes(
    values: Sequence[float] | np.ndarray,
    peaks: Sequence[int],
    valleys: Sequence[int],
) -> np.ndarray:
    """
    Height of each peak above its pairing valley.

    Each peak is paired with the closest valley preceding it, or the first
    valley after it when none precedes.
    """
    if not peaks or not valleys:
        return np.array([])
    values = np.asarray(values, dtype=np.float64)
    valley_idx = np.asarray(valleys)
    heights = []
    for p in peaks:
        before = valley_idx[valley_idx < p]
        v = before[-1] if before.size else valley_idx[valley_idx > p][0]
        heights.append(values[p] - values[v])
    return np.asarray(heights, dtype=np.float64)


def signal_quality(
    values: Sequence[float] | np.ndarray,
    peaks: Sequence[int],
    valleys: Sequence[int],
) -> float:
    """
    Waveform regularity score in [0, 100].

    ``100 * (1 - std(amplitude) / mean(amplitude))`` over the peak-valley
    heights; 0 when no pulse can be measured.
    """
    heights = pulse_amplitudes(values, peaks, valleys)
    if heights.size == 0:
        return 0.0
    avg = float(heights.mean())
    if avg <= 0:
        return 0.0
    variability = float(heights.std())
    return float(np.clip(100.0 * (1.0 - variability / avg), 0.0, 100.0))
