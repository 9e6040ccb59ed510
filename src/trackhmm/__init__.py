"""Behavioural-state HMMs for animal GPS tracks."""

from trackhmm.config import HMMConfig, PipelineConfig
from trackhmm.features import TrajectoryProcessor
from trackhmm.models import MovementHMM
from trackhmm.segmentation import InvalidInput, LocationRecord, split_at_gaps, split_records

__all__ = [
    "HMMConfig",
    "InvalidInput",
    "LocationRecord",
    "MovementHMM",
    "PipelineConfig",
    "TrajectoryProcessor",
    "split_at_gaps",
    "split_records",
]

__version__ = "0.1.0"
