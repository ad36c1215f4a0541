#!/usr/bin/env python3
"""
PPG Vitals – headless command-line monitor.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --video PATH         Read frames from a recorded video file
    --camera-index INT   OpenCV camera index (default source)
    --synthetic SECONDS  Run on a generated PPG stream instead of a camera
    --bpm FLOAT          Heart rate of the synthetic stream (default: 72)
    --noise FLOAT        Noise std-dev of the synthetic stream (default: 0)
    --ectopic N [N ...]  Beat numbers made premature in the synthetic stream
    --fps FLOAT          Nominal frame rate (default: 30)
    --roi FLOAT          Central ROI side as a fraction of the frame (default: 0.25)
    --config PATH        JSON file with PipelineConfig overrides
    --verbose            Debug logging

The pipeline is reset whenever finger contact is lost.  A snapshot is
logged about once per second and the final-read risk labels are printed
when the stream ends.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterator

from ppg_vitals.config import PipelineConfig
from ppg_vitals.contact import looks_like_finger
from ppg_vitals.models import Sample, VitalsSnapshot, format_pressure
from ppg_vitals.pipeline import VitalSignsProcessor
from ppg_vitals.risk import VitalSignsRisk
from ppg_vitals.source import SyntheticSource, VideoSource, roi_intensity

logger = logging.getLogger("ppg_vitals")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Vital-sign monitor from a single-channel camera PPG signal",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--video", type=Path, default=None,
                        help="Recorded video file to analyse")
    source.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    source.add_argument("--synthetic", type=float, default=None, metavar="SECONDS",
                        help="Analyse a generated PPG stream of this duration")
    parser.add_argument("--bpm", type=float, default=72.0,
                        help="Heart rate of the synthetic stream")
    parser.add_argument("--noise", type=float, default=0.0,
                        help="Gaussian noise std-dev of the synthetic stream")
    parser.add_argument("--ectopic", type=int, nargs="*", default=[],
                        help="Premature beat numbers in the synthetic stream")
    parser.add_argument("--fps", type=float, default=30.0,
                        help="Nominal frame rate")
    parser.add_argument("--roi", type=float, default=0.25,
                        help="Central ROI side as a fraction of the frame")
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON file with pipeline configuration overrides")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def load_config(path: Path | None) -> PipelineConfig:
    if path is None:
        return PipelineConfig()
    with open(path, encoding="utf-8") as fh:
        return PipelineConfig.from_dict(json.load(fh))


# ---------------------------------------------------------------------------
# Sample streams
# ---------------------------------------------------------------------------

def camera_samples(source: VideoSource, roi: float) -> Iterator[tuple[Sample, bool]]:
    """Yield ``(sample, covered)`` where *covered* is the frame-level finger check."""
    for timestamp, frame in source.frames():
        yield Sample(timestamp, roi_intensity(frame, roi)), looks_like_finger(frame)


def synthetic_samples(args: argparse.Namespace) -> Iterator[tuple[Sample, bool]]:
    generator = SyntheticSource(
        bpm=args.bpm,
        fps=args.fps,
        noise=args.noise,
        ectopic_beats=args.ectopic,
    )
    for sample in generator.samples(args.synthetic):
        yield sample, True


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def describe(snapshot: VitalsSnapshot) -> str:
    if snapshot.heart_rate <= 0 and snapshot.spo2 <= 0:
        return f"Waiting for signal…  finger={snapshot.finger_detected}"
    return (
        f"BPM={snapshot.heart_rate}  SpO2={snapshot.spo2}%  "
        f"BP={format_pressure(snapshot.pressure)}  "
        f"rhythm={snapshot.arrhythmia_status}  quality={snapshot.signal_quality}  "
        f"finger={snapshot.finger_detected}"
    )


def monitor(
    processor: VitalSignsProcessor,
    samples: Iterator[tuple[Sample, bool]],
    log_interval_ms: float = 1000.0,
    reset_on_contact_loss: bool = True,
) -> VitalsSnapshot:
    """Drive *processor* over *samples*; return the last snapshot."""
    had_contact = False
    last_log = None
    snapshot = processor.snapshot
    for sample, covered in samples:
        snapshot = processor.process_sample(sample.raw_intensity, sample.timestamp)
        contact = covered and snapshot.finger_detected
        if reset_on_contact_loss and had_contact and not contact:
            logger.info("Finger contact lost – resetting.")
            processor.reset()
        had_contact = contact

        if last_log is None or sample.timestamp - last_log >= log_interval_ms:
            logger.info(describe(snapshot))
            last_log = sample.timestamp
    return snapshot


def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        logger.error("Invalid --config: %s", exc)
        return 1
    config = replace(config, filter=replace(config.filter, fps=args.fps))

    risk = VitalSignsRisk(config.risk)
    processor = VitalSignsProcessor(config, risk=risk)
    logger.info("Starting vital-signs monitor.  Press Ctrl+C to stop.")

    try:
        if args.synthetic is not None:
            monitor(processor, synthetic_samples(args), reset_on_contact_loss=False)
        else:
            source = VideoSource(str(args.video) if args.video else args.camera_index, fps=args.fps)
            with source:
                monitor(processor, camera_samples(source, args.roi))
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")

    final = processor.final_risk()
    snapshot = processor.snapshot
    print(f"Heart rate : {snapshot.heart_rate} bpm  {final.heart_rate.label if final else ''}")
    print(f"SpO2       : {snapshot.spo2} %  {final.spo2.label if final else ''}")
    print(f"Pressure   : {format_pressure(snapshot.pressure)}  {final.pressure.label if final else ''}")
    print(f"Rhythm     : {snapshot.arrhythmia_status}")
    return 0


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
