"""
Sample sources for the vitals pipeline.

:class:`VideoSource` wraps OpenCV ``VideoCapture`` (a recorded video file or
a camera index) and yields BGR frames; :func:`roi_intensity` reduces a frame
to the single red-channel intensity the pipeline consumes.
:class:`SyntheticSource` produces a reproducible PPG-like stream for demos
and tests.
"""

from __future__ import annotations

import logging
import time
from typing import Generator, Iterator, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from .models import Sample

logger = logging.getLogger(__name__)


def roi_intensity(frame: np.ndarray, fraction: float = 0.25) -> float:
    """
    Mean red intensity over the central square region of *frame*.

    Parameters
    ----------
    frame:
        BGR image array (H × W × 3, uint8).
    fraction:
        Side length of the ROI relative to the frame (0 – 1].
    """
    h, w = frame.shape[:2]
    fraction = min(max(fraction, 1.0 / min(h, w)), 1.0)
    rh = max(1, int(round(h * fraction)))
    rw = max(1, int(round(w * fraction)))
    y0 = (h - rh) // 2
    x0 = (w - rw) // 2
    return float(np.mean(frame[y0:y0 + rh, x0:x0 + rw, 2]))  # channel 2 = Red in BGR


class VideoSource:
    """
    Frame iterator over a video file or camera.

    Parameters
    ----------
    source:
        Path to a video file, or an integer OpenCV camera index.
    fps:
        Requested capture rate for cameras; for files the container rate is
        used to derive timestamps.
    """

    def __init__(self, source: Union[str, int] = 0, fps: float = 30.0) -> None:
        self.source = source
        self.fps = fps
        self._cap: Optional[cv2.VideoCapture] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Open the capture device or file."""
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            raise RuntimeError(f"Cannot open video source {self.source!r}")
        if isinstance(self.source, int):
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        else:
            reported = cap.get(cv2.CAP_PROP_FPS)
            if reported and reported > 0:
                self.fps = float(reported)
        self._cap = cap
        logger.info("Video source opened – source=%r fps=%.1f", self.source, self.fps)

    def close(self) -> None:
        """Release the capture."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Video source closed.")

    # Context-manager support
    def __enter__(self) -> "VideoSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def frames(self) -> Generator[Tuple[float, np.ndarray], None, None]:
        """
        Yield ``(timestamp_ms, frame)`` until the source is exhausted.

        Files are timestamped from the frame position so replay speed does
        not matter; cameras use the monotonic clock.
        """
        if self._cap is None:
            raise RuntimeError("Video source is not open.  Call open() first.")
        index = 0
        while True:
            ok, frame = self._cap.read()
            if not ok or frame is None:
                logger.info("Video source exhausted after %d frames.", index)
                return
            if isinstance(self.source, int):
                timestamp = time.monotonic() * 1000.0
            else:
                timestamp = index * 1000.0 / self.fps
            index += 1
            yield timestamp, frame

    def samples(self, fraction: float = 0.25) -> Iterator[Sample]:
        for timestamp, frame in self.frames():
            yield Sample(timestamp, roi_intensity(frame, fraction))


class SyntheticSource:
    """
    Reproducible PPG-like intensity stream.

    Parameters
    ----------
    bpm:
        Heart rate of the simulated pulse.
    fps:
        Sample rate.
    baseline, amplitude:
        DC level and pulsatile half-amplitude, in intensity units.
    noise:
        Standard deviation of additive Gaussian noise.
    ectopic_beats:
        Beat numbers (0-based) that arrive early by ``ectopic_ratio`` of the
        normal period, followed by a compensatory pause.
    seed:
        RNG seed for the noise.
    """

    def __init__(
        self,
        bpm: float = 72.0,
        fps: float = 30.0,
        baseline: float = 180.0,
        amplitude: float = 6.0,
        noise: float = 0.0,
        ectopic_beats: Sequence[int] = (),
        ectopic_ratio: float = 0.5,
        seed: Optional[int] = 0,
    ) -> None:
        self.bpm = bpm
        self.fps = fps
        self.baseline = baseline
        self.amplitude = amplitude
        self.noise = noise
        self.ectopic_beats = frozenset(ectopic_beats)
        self.ectopic_ratio = ectopic_ratio
        self.seed = seed

    def beat_times(self, duration_s: float) -> np.ndarray:
        """Onset times (s) of every simulated beat within *duration_s*."""
        period = 60.0 / self.bpm
        times = []
        t = 0.0
        beat = 0
        while t < duration_s + period:
            times.append(t)
            if beat in self.ectopic_beats:
                step = period * (1.0 - self.ectopic_ratio)
            elif beat - 1 in self.ectopic_beats:
                step = period * (1.0 + self.ectopic_ratio)
            else:
                step = period
            t += step
            beat += 1
        return np.asarray(times)

    def generate(self, duration_s: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(timestamps_ms, intensities)`` covering *duration_s*."""
        n = int(round(duration_s * self.fps))
        t = np.arange(n) / self.fps
        onsets = self.beat_times(duration_s)
        idx = np.clip(np.searchsorted(onsets, t, side="right") - 1, 0, len(onsets) - 2)
        start = onsets[idx]
        length = onsets[idx + 1] - start
        phase = (t - start) / length
        pulse = np.cos(2.0 * np.pi * phase)
        signal = self.baseline + self.amplitude * pulse
        if self.noise > 0:
            rng = np.random.default_rng(self.seed)
            signal = signal + rng.normal(0.0, self.noise, n)
        return t * 1000.0, signal

    def samples(self, duration_s: float) -> Iterator[Sample]:
        timestamps, values = self.generate(duration_s)
        for ts, value in zip(timestamps, values):
            yield Sample(float(ts), float(value))
