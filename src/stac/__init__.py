"""
STAC - Semisupervised Ternary Agglomerative Clustering.

Clusters boolean feature vectors, using malware/accept labels only as a
merge veto.
"""

__version__ = "0.1.0"

from .clustering import (
    STAC,
    Label,
    JobState,
    Connection,
    TrainOutcome,
    LabelledPoint,
    hamming_distance,
)
from .config import StacConfig
from .errors import (
    StacError,
    DimensionMismatchError,
    TrainingInProgressError,
    TrainingFailedError,
    DatasetError,
)

__all__ = [
    "STAC",
    "Label",
    "JobState",
    "Connection",
    "TrainOutcome",
    "LabelledPoint",
    "hamming_distance",
    "StacConfig",
    "StacError",
    "DimensionMismatchError",
    "TrainingInProgressError",
    "TrainingFailedError",
    "DatasetError",
]
