"""
Tunable parameters for every stage of the vitals pipeline.

Each stage owns a small frozen dataclass.  The defaults form one internally
consistent parameter set; override any field by constructing the dataclass
with keyword arguments, or derive a variant with :func:`dataclasses.replace`.

    >>> cfg = PipelineConfig(spo2=SpO2Config(ema_weight=0.4))
    >>> cfg = PipelineConfig.from_dict({"arrhythmia": {"rmssd_threshold_ms": 40}})
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping, Optional, Tuple


# ---------------------------------------------------------------------------
# Input conditioning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FilterConfig:
    sma_window: int = 3
    use_kalman: bool = True
    process_variance: float = 0.1        # Q
    measurement_variance: float = 0.01   # R
    use_bandpass: bool = False
    fps: float = 30.0
    bandpass_low_hz: float = 0.75
    bandpass_high_hz: float = 4.0
    bandpass_order: int = 2


# ---------------------------------------------------------------------------
# Landmarks and beats
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LandmarkConfig:
    margin: int = 3                      # k neighbours compared on each side


@dataclass(frozen=True)
class BeatConfig:
    min_peak_spacing_ms: float = 300.0
    min_rr_ms: float = 300.0
    max_rr_ms: float = 2000.0
    history_size: int = 50
    bpm_intervals: int = 8               # intervals averaged for the bpm readout
    prominence_window: int = 60          # samples used for the prominence gate
    min_prominence_ratio: float = 0.5


# ---------------------------------------------------------------------------
# Arrhythmia
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ArrhythmiaConfig:
    learning_intervals: int = 20
    learning_period_ms: Optional[float] = 3000.0
    min_intervals: int = 8
    history_size: int = 50
    min_rr_ms: float = 300.0
    max_rr_ms: float = 2000.0
    rmssd_threshold_ms: float = 30.0
    rr_variation_threshold: float = 0.20
    cooldown_ms: float = 1000.0
    max_events: int = 30
    # Atrial-fibrillation pattern
    af_rmssd_threshold_ms: float = 100.0
    af_variation_threshold: float = 0.10
    af_irregular_diff_ms: float = 100.0
    af_irregular_ratio: float = 0.70
    # Premature-beat patterns
    pac_min_prev_ms: float = 600.0
    pac_short_ratio: float = 0.8
    pac_long_ratio: float = 1.1
    pvc_short_ratio: float = 0.8
    pvc_long_ratio: float = 1.2
    pvc_amplitude_ratio: float = 1.3


# ---------------------------------------------------------------------------
# Oxygen saturation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpO2Config:
    window: int = 60
    min_samples: int = 20
    min_perfusion_index: float = 0.05
    max_perfusion_index: float = 10.0
    min_normalized_variance: float = 1e-4
    max_normalized_variance: float = 0.05
    ratio_scale: float = 3.0
    curve_a: float = 110.0
    curve_b: float = 20.0
    min_spo2: float = 85.0
    max_spo2: float = 100.0
    raw_buffer_size: int = 10
    iqr_factor: float = 1.5
    ema_weight: float = 0.35
    display_step: float = 1.0
    calibration_reference: float = 97.0
    calibration_max_offset: float = 3.0
    calibration_min_values: int = 5
    calibration_buffer_size: int = 30
    max_consecutive_failures: int = 5


# ---------------------------------------------------------------------------
# Blood pressure
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BloodPressureConfig:
    window: int = 90
    min_samples: int = 30
    sample_period_ms: float = 1000.0 / 30.0
    recency_weighted_ptt: bool = False
    ptt_min_ms: float = 600.0
    ptt_max_ms: float = 1200.0
    ptt_reference_ms: float = 800.0
    max_ptt_dispersion: float = 0.6
    systolic_base: float = 120.0
    diastolic_base: float = 80.0
    systolic_ptt_coeff: float = 0.075
    diastolic_ptt_coeff: float = 0.05
    amplitude_reference: float = 0.1
    systolic_amplitude_coeff: float = 30.0
    diastolic_amplitude_coeff: float = 15.0
    systolic_stiffness_coeff: float = 1.0
    diastolic_stiffness_coeff: float = 0.5
    notch_weight: float = 0.6
    decay_weight: float = 0.4
    systolic_range: Tuple[float, float] = (80.0, 190.0)
    diastolic_range: Tuple[float, float] = (50.0, 120.0)
    min_differential: float = 20.0
    max_differential: float = 80.0
    history_size: int = 10
    history_decay: float = 0.7
    jitter_mmhg: float = 0.0             # cosmetic, non-physiological; 0 disables
    jitter_seed: Optional[int] = None
    max_consecutive_failures: int = 5


# ---------------------------------------------------------------------------
# Contact / signal quality
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContactConfig:
    min_intensity: float = 95.0
    max_intensity: float = 235.0
    stability_window: int = 8
    min_stable_count: int = 6
    hold_ms: float = 500.0
    calibration_widening: float = 5.0


# ---------------------------------------------------------------------------
# Risk aggregation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RiskConfig:
    measurement_window_ms: float = 40000.0
    stability_window_ms: float = 4000.0
    final_window_ms: float = 20000.0
    min_stable_samples: int = 3
    stable_fraction: float = 0.75
    smoothing_factor: float = 0.25


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineConfig:
    buffer_size: int = 300
    processing_interval_ms: float = 0.0
    filter: FilterConfig = field(default_factory=FilterConfig)
    landmarks: LandmarkConfig = field(default_factory=LandmarkConfig)
    beats: BeatConfig = field(default_factory=BeatConfig)
    arrhythmia: ArrhythmiaConfig = field(default_factory=ArrhythmiaConfig)
    spo2: SpO2Config = field(default_factory=SpO2Config)
    blood_pressure: BloodPressureConfig = field(default_factory=BloodPressureConfig)
    contact: ContactConfig = field(default_factory=ContactConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """
        Build a config from a nested mapping (e.g. a parsed JSON file).

        Top-level scalar keys set pipeline fields; nested mappings override
        the matching section.  Unknown keys raise :class:`ValueError`.
        """
        return _merge(cls(), data)


def _merge(instance: Any, data: Mapping[str, Any]) -> Any:
    known = {f.name: f for f in fields(instance)}
    changes = {}
    for key, value in data.items():
        if key not in known:
            raise ValueError(
                f"Unknown {type(instance).__name__} option: {key!r}"
            )
        current = getattr(instance, key)
        if isinstance(value, Mapping) and hasattr(current, "__dataclass_fields__"):
            changes[key] = _merge(current, value)
        elif isinstance(current, tuple):
            changes[key] = tuple(value)
        else:
            changes[key] = value
    return replace(instance, **changes)
