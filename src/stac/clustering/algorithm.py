"""
Clustering algorithms for STAC.

Core functions for nearest-neighbour agglomeration in boolean space with a
label-conflict veto and bounded ternary retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..errors import DatasetError, DimensionMismatchError
from .models import (
    ClusterAssignment,
    Label,
    PointCollection,
    RetryLedger,
    RetryRecord,
    parse_coords,
)


# Stop reasons
STOP_NO_CANDIDATE = "no_candidate"
STOP_RETRIES_EXHAUSTED = "retries_exhausted"
STOP_TARGET_REACHED = "target_clusters"
STOP_DISTANCE_INCREASE = "distance_increase"

ConflictRule = Callable[[set, set], bool]


def _as_bool_vector(value) -> np.ndarray:
    if isinstance(value, np.ndarray) and value.dtype == bool:
        vector = value
    else:
        # Rejects anything but bools and 0/1
        vector = np.array(parse_coords(value), dtype=bool)
    if vector.ndim != 1:
        raise DimensionMismatchError(f"Expected a 1-D boolean vector, got shape {vector.shape}")
    return vector


def hamming_distance(a, b) -> int:
    """Count positions where two equal-length boolean vectors differ."""
    va = _as_bool_vector(a)
    vb = _as_bool_vector(b)
    if va.shape != vb.shape:
        raise DimensionMismatchError(
            f"Cannot compare vectors of length {va.shape[0]} and {vb.shape[0]}"
        )
    return int(np.count_nonzero(va != vb))


def pairwise_hamming(matrix: np.ndarray) -> np.ndarray:
    """N x N Hamming distance matrix for an N x D boolean matrix."""
    x = np.asarray(matrix, dtype=np.int64)
    if x.ndim != 2:
        raise DimensionMismatchError(f"Expected a 2-D point matrix, got shape {x.shape}")
    if not np.isin(x, (0, 1)).all():
        raise DatasetError("Point matrix may only contain booleans or 0/1")
    flipped = 1 - x
    return x @ flipped.T + flipped @ x.T


def nearest_cross_cluster(
    distances: np.ndarray,
    ids: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """
    For every point, the nearest point outside its own cluster.

    Same-cluster pairs (including the point itself) are masked out. Ties
    resolve to the lowest index.

    Returns:
        (neighbours, nearest): neighbour index and its distance per point.
        Points with no cross-cluster neighbour have distance inf.
    """
    n = len(ids)
    if n == 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=float)

    masked = distances.astype(float)
    masked[ids[:, None] == ids[None, :]] = np.inf

    neighbours = np.argmin(masked, axis=1)
    nearest = masked[np.arange(n), neighbours]
    return neighbours, nearest


def select_candidate(
    neighbours: np.ndarray,
    nearest: np.ndarray,
) -> Optional[tuple[int, int, int]]:
    """Globally closest cross-cluster pair (a, b, distance), first in index order."""
    if len(nearest) == 0:
        return None
    a = int(np.argmin(nearest))
    if np.isinf(nearest[a]):
        return None
    return a, int(neighbours[a]), int(nearest[a])


def ranked_neighbours(distances: np.ndarray, ids: np.ndarray, a: int) -> list[int]:
    """Cross-cluster neighbours of a, nearest first, ties by index."""
    others = np.flatnonzero(ids != ids[a])
    order = np.argsort(distances[a, others], kind="stable")
    return others[order].tolist()


def labels_conflict(left: set, right: set) -> bool:
    """Default veto: one side holds malware and the other holds accept."""
    return (
        (Label.MALWARE in left and Label.ACCEPT in right)
        or (Label.ACCEPT in left and Label.MALWARE in right)
    )


def cluster_labels(points: PointCollection, assignment: ClusterAssignment, i: int) -> set:
    """Labels present in the cluster holding point i (unlabeled points ignored)."""
    return {
        points[m].label
        for m in assignment.members(assignment.find(i))
        if points[m].label is not None
    }


def merge_allowed(
    points: PointCollection,
    assignment: ClusterAssignment,
    a: int,
    b: int,
    conflict_rule: ConflictRule = labels_conflict,
) -> bool:
    """Check whether joining the clusters of a and b passes the label veto."""
    if assignment.same(a, b):
        return True
    return not conflict_rule(
        cluster_labels(points, assignment, a),
        cluster_labels(points, assignment, b),
    )


@dataclass
class MergeAttempt:
    """Outcome of one candidate plus its retry chain."""

    merged: bool
    pair: tuple[int, int]        # Last pair tried (the merged one on success)
    distance: int                # Distance of that pair
    retries: int                 # Retry records written for this candidate


def attempt_merge(
    points: PointCollection,
    assignment: ClusterAssignment,
    ledger: RetryLedger,
    distances: np.ndarray,
    a: int,
    b: int,
    eta: int,
    iteration: int = 0,
    conflict_rule: ConflictRule = labels_conflict,
    logger=None,
    verbose: bool = False,
) -> MergeAttempt:
    """
    Try to merge (a, b), falling back to a's next-nearest neighbours.

    Each veto with budget left and an alternate available writes one
    RetryRecord (a, b) -> (a, b') and retries with b'. At most eta retries
    are made, so the ledger grows by at most eta for one candidate.

    Args:
        points: Point collection being clustered
        assignment: ClusterAssignment to update
        ledger: RetryLedger to append to
        distances: Pairwise distance matrix for points
        a, b: Candidate pair selected for this iteration
        eta: Retry budget for this candidate
        iteration: Current iteration number (for records)
        conflict_rule: Veto over the two clusters' label sets
        logger: Optional TrainingLogger
        verbose: Print progress

    Returns:
        MergeAttempt describing the final pair tried and whether it merged
    """
    ids = assignment.as_array()
    candidates = ranked_neighbours(distances, ids, a)
    if b in candidates:
        position = candidates.index(b)
    else:
        candidates.insert(0, b)
        position = 0

    budget = eta
    retries = 0

    while True:
        current = candidates[position]
        distance = int(distances[a, current])

        if merge_allowed(points, assignment, a, current, conflict_rule):
            assignment.union(a, current)
            return MergeAttempt(merged=True, pair=(a, current), distance=distance, retries=retries)

        if budget == 0 or position + 1 >= len(candidates):
            if verbose:
                print(f"  Vetoed ({a}, {current}) at distance {distance}, no retries left")
            return MergeAttempt(merged=False, pair=(a, current), distance=distance, retries=retries)

        alternate = candidates[position + 1]
        ledger.append(RetryRecord(
            initial=(points[a].coords, points[current].coords),
            resolve=(points[a].coords, points[alternate].coords),
            initial_indices=(a, current),
            resolve_indices=(a, alternate),
            iteration=iteration,
        ))
        budget -= 1
        retries += 1

        if logger:
            logger.log_retry(iteration, (a, current), (a, alternate), budget)
        if verbose:
            print(f"  Vetoed ({a}, {current}), retrying with ({a}, {alternate}), budget {budget}")

        position += 1


@dataclass
class IterationResult:
    """Result of one training iteration; stop_reason is None to continue."""

    stop_reason: Optional[str]
    attempt: Optional[MergeAttempt] = None


def training_iteration(
    points: PointCollection,
    assignment: ClusterAssignment,
    ledger: RetryLedger,
    distances: np.ndarray,
    eta: int,
    iteration: int,
    conflict_rule: ConflictRule = labels_conflict,
    target_clusters: Optional[int] = None,
    last_merge_distance: Optional[int] = None,
    stop_on_distance_increase: bool = True,
    logger=None,
    verbose: bool = False,
) -> IterationResult:
    """
    Run one iteration: find the closest cross-cluster pair and try to merge it.

    The retry budget is reset to eta for every iteration.
    """
    if target_clusters is not None and assignment.num_clusters <= target_clusters:
        return IterationResult(stop_reason=STOP_TARGET_REACHED)

    neighbours, nearest = nearest_cross_cluster(distances, assignment.as_array())
    candidate = select_candidate(neighbours, nearest)
    if candidate is None:
        return IterationResult(stop_reason=STOP_NO_CANDIDATE)

    a, b, distance = candidate
    if (
        stop_on_distance_increase
        and last_merge_distance is not None
        and distance > last_merge_distance
    ):
        return IterationResult(stop_reason=STOP_DISTANCE_INCREASE)

    attempt = attempt_merge(
        points, assignment, ledger, distances, a, b, eta,
        iteration=iteration,
        conflict_rule=conflict_rule,
        logger=logger,
        verbose=verbose,
    )

    if not attempt.merged:
        return IterationResult(stop_reason=STOP_RETRIES_EXHAUSTED, attempt=attempt)

    if logger:
        logger.log_merge(iteration, attempt.pair, attempt.distance, assignment.num_clusters)
    if verbose:
        print(f"  Iteration {iteration}: merged {attempt.pair} at distance {attempt.distance}, "
              f"{assignment.num_clusters} clusters")

    return IterationResult(stop_reason=None, attempt=attempt)


def run_training(
    points: PointCollection,
    assignment: ClusterAssignment,
    ledger: RetryLedger,
    eta: int,
    conflict_rule: ConflictRule = labels_conflict,
    target_clusters: Optional[int] = None,
    stop_on_distance_increase: bool = True,
    logger=None,
    verbose: bool = False,
    on_iteration: Optional[Callable[[int, ClusterAssignment], None]] = None,
) -> dict:
    """
    Merge clusters until no legal merge remains.

    Distances are computed once from the immutable point matrix; each
    iteration only re-masks same-cluster pairs.

    Args:
        points: Point collection to cluster
        assignment: ClusterAssignment to update (normally discrete)
        ledger: RetryLedger to append to
        eta: Retry budget per selected candidate
        conflict_rule: Veto over two clusters' label sets
        target_clusters: Stop once this many clusters remain
        stop_on_distance_increase: Stop when the closest pair is farther
            apart than the last accepted merge
        logger: Optional TrainingLogger
        verbose: Print progress
        on_iteration: Called with (iteration, assignment) after every merge

    Returns:
        Dict with stats: {iterations, merges, retries, clusters, stop_reason}
    """
    if eta < 0:
        raise ValueError(f"eta must be non-negative, got {eta}")

    distances = pairwise_hamming(points.matrix)
    stats = {
        "iterations": 0,
        "merges": 0,
        "retries": 0,
        "clusters": assignment.num_clusters,
        "stop_reason": None,
    }

    if verbose:
        print(f"Training on {len(points)} points (dimension {points.dimension}), eta={eta}")

    last_merge_distance = None
    iteration = 0
    while True:
        iteration += 1
        result = training_iteration(
            points, assignment, ledger, distances, eta, iteration,
            conflict_rule=conflict_rule,
            target_clusters=target_clusters,
            last_merge_distance=last_merge_distance,
            stop_on_distance_increase=stop_on_distance_increase,
            logger=logger,
            verbose=verbose,
        )
        if result.attempt is not None:
            stats["iterations"] += 1
            stats["retries"] += result.attempt.retries

        if result.stop_reason is not None:
            stats["stop_reason"] = result.stop_reason
            break

        stats["merges"] += 1
        last_merge_distance = result.attempt.distance
        if on_iteration:
            on_iteration(iteration, assignment)

    stats["clusters"] = assignment.num_clusters

    if verbose:
        print(f"Done: {stats['merges']} merges, {stats['retries']} retries, "
              f"{stats['clusters']} clusters ({stats['stop_reason']})")

    return stats
