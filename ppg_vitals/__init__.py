"""
PPG Vitals – vital-sign estimation from a single-channel optical pulse signal.
Place a finger over the camera lens with the torch on; the red-channel
intensity drives heart-rate, arrhythmia, SpO2 and blood-pressure estimates.
"""

from .config import PipelineConfig
from .models import RRBundle, VitalsSnapshot
from .pipeline import VitalSignsProcessor
from .risk import VitalSignsRisk

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "RRBundle",
    "VitalSignsProcessor",
    "VitalSignsRisk",
    "VitalsSnapshot",
]
