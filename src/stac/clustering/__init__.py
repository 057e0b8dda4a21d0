"""
Semisupervised ternary agglomerative clustering.

Merges nearest boolean-space points cluster by cluster, using labels only
to veto merges, with a bounded number of alternate attempts per veto.
"""

from .models import (
    Label,
    JobState,
    Connection,
    TrainOutcome,
    LabelledPoint,
    PointCollection,
    ClusterAssignment,
    RetryRecord,
    RetryLedger,
    parse_coords,
    format_coords,
)
from .algorithm import (
    hamming_distance,
    pairwise_hamming,
    nearest_cross_cluster,
    select_candidate,
    ranked_neighbours,
    labels_conflict,
    merge_allowed,
    attempt_merge,
    training_iteration,
    run_training,
    STOP_NO_CANDIDATE,
    STOP_RETRIES_EXHAUSTED,
    STOP_TARGET_REACHED,
    STOP_DISTANCE_INCREASE,
)
from .manager import STAC

__all__ = [
    # Models
    "Label",
    "JobState",
    "Connection",
    "TrainOutcome",
    "LabelledPoint",
    "PointCollection",
    "ClusterAssignment",
    "RetryRecord",
    "RetryLedger",
    "parse_coords",
    "format_coords",
    # Algorithm
    "hamming_distance",
    "pairwise_hamming",
    "nearest_cross_cluster",
    "select_candidate",
    "ranked_neighbours",
    "labels_conflict",
    "merge_allowed",
    "attempt_merge",
    "training_iteration",
    "run_training",
    "STOP_NO_CANDIDATE",
    "STOP_RETRIES_EXHAUSTED",
    "STOP_TARGET_REACHED",
    "STOP_DISTANCE_INCREASE",
    # Manager
    "STAC",
]
