"""
Finger-contact detection and contact quality.

When a finger covers the lens and the torch is on, the red intensity is
bright but bounded, and the conditioned signal varies only by the small
pulsatile component.  :class:`ContactDetector` applies that rule to the
intensity stream so the consumer can tell "no finger" from "no pulse".

:func:`looks_like_finger` is the frame-level counterpart used by the
command-line monitor before a frame is reduced to one intensity value.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Deque, Optional

import numpy as np

from .config import ContactConfig


@dataclass(frozen=True)
class ContactStatus:
    finger_detected: bool
    quality: int


def looks_like_finger(
    frame: np.ndarray,
    brightness_threshold: float = 100.0,
    variance_threshold: float = 800.0,
    red_dominance: float = 1.05,
) -> bool:
    """
    Heuristic: is the lens covered by a finger?

    A covered lens gives a uniform, red-dominated field.  With the torch on
    the frame can be bright, so brightness is checked on the non-red
    channels only.

    Parameters
    ----------
    frame:
        BGR image array (H × W × 3, uint8).
    """
    b_ch = frame[:, :, 0].astype(np.float64)
    g_ch = frame[:, :, 1].astype(np.float64)
    r_ch = frame[:, :, 2].astype(np.float64)

    mean_r = float(r_ch.mean())
    mean_g = float(g_ch.mean())
    mean_b = float(b_ch.mean())
    brightness = (mean_g + mean_b) / 2.0
    variance = float(r_ch.var())

    red_ratio = mean_r / (mean_g + 1e-6)

    dark_enough     = brightness < brightness_threshold
    uniform_enough  = variance < variance_threshold
    skin_tone       = red_ratio >= red_dominance

    return dark_enough and uniform_enough and skin_tone


class ContactDetector:
    """
    Stream-level finger detector.

    A raw sample must lie within ``[min_intensity, max_intensity]``; the
    last ``stability_window`` conditioned values must then vary less than an
    adaptive threshold (``max(2.5, 3 % of their mean)``).  Contact is
    reported after ``min_stable_count`` consecutive stable samples and held
    for ``hold_ms`` after the last positive decision.
    """

    def __init__(self, config: ContactConfig | None = None) -> None:
        self.default_config = config or ContactConfig()
        self.config = self.default_config
        self._values: Deque[float] = deque(maxlen=self.config.stability_window)
        self.reset()

    def reset(self) -> None:
        self._values.clear()
        self._consecutive_stable = 0
        self._last_stable_value = 0.0
        self._last_detection_time: Optional[float] = None

    def calibrate(self) -> None:
        """Widen the accepted intensity band and restart detection."""
        cfg = self.default_config
        self.config = replace(
            cfg,
            min_intensity=max(25.0, cfg.min_intensity - cfg.calibration_widening),
            max_intensity=min(255.0, cfg.max_intensity + cfg.calibration_widening),
        )
        self.reset()

    def reset_to_default(self) -> None:
        self.config = self.default_config
        self.reset()

    def update(self, raw: float, filtered: float, timestamp: float) -> ContactStatus:
        cfg = self.config
        self._values.append(filtered)

        if (
            self._last_detection_time is not None
            and timestamp - self._last_detection_time < cfg.hold_ms
        ):
            return ContactStatus(
                self._consecutive_stable >= cfg.min_stable_count,
                self._quality(raw, filtered),
            )

        if not cfg.min_intensity <= raw <= cfg.max_intensity:
            self._consecutive_stable = 0
            return ContactStatus(False, 0)

        if len(self._values) < cfg.stability_window:
            return ContactStatus(False, 0)

        recent = np.fromiter(self._values, dtype=np.float64)
        variations = np.abs(np.diff(recent))
        threshold = max(2.5, float(recent.mean()) * 0.03)
        stable = (
            float(variations.max()) < threshold * 1.8
            and float(variations.mean()) < threshold
            and float(variations.std()) < threshold * 0.5
        )
        if stable:
            self._consecutive_stable += 1
            self._last_stable_value = filtered
        else:
            self._consecutive_stable = max(0, self._consecutive_stable - 1)

        detected = self._consecutive_stable >= cfg.min_stable_count
        if detected:
            self._last_detection_time = timestamp
        return ContactStatus(detected, self._quality(raw, filtered))

    def _quality(self, raw: float, filtered: float) -> int:
        cfg = self.config
        if self._consecutive_stable < cfg.min_stable_count:
            return 0
        stability = min(self._consecutive_stable / (cfg.min_stable_count * 2), 1.0)
        intensity = min(
            (raw - cfg.min_intensity) / (cfg.max_intensity - cfg.min_intensity), 1.0
        )
        variation = max(0.0, 1.0 - abs(filtered - self._last_stable_value) / 10.0)
        return int(round((stability * 0.6 + intensity * 0.2 + variation * 0.2) * 100))
