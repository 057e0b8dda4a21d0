"""
Test the STAC clustering algorithm: distance, candidate search, merges and retries
"""

import numpy as np
import pytest

from stac.clustering.algorithm import (
    STOP_DISTANCE_INCREASE,
    STOP_NO_CANDIDATE,
    STOP_RETRIES_EXHAUSTED,
    STOP_TARGET_REACHED,
    attempt_merge,
    hamming_distance,
    labels_conflict,
    merge_allowed,
    nearest_cross_cluster,
    pairwise_hamming,
    ranked_neighbours,
    run_training,
    select_candidate,
)
from stac.clustering.models import (
    ClusterAssignment,
    Label,
    PointCollection,
    RetryLedger,
)
from stac.errors import DatasetError, DimensionMismatchError


FOUR_POINTS = [("0000", None), ("0001", None), ("1110", None), ("1111", None)]


def make(points):
    data = PointCollection(points)
    return data, ClusterAssignment.initialize(len(data)), RetryLedger()


def test_hamming_distance():
    assert hamming_distance("0000", "0001") == 1
    assert hamming_distance("0000", "1111") == 4
    assert hamming_distance([True, False], [1, 0]) == 0
    assert hamming_distance("0110", "1011") == hamming_distance("1011", "0110") == 3


def test_hamming_distance_rejects_length_mismatch():
    with pytest.raises(DimensionMismatchError):
        hamming_distance("000", "0000")


def test_hamming_distance_rejects_non_bits():
    """Values other than booleans and 0/1 raise instead of being truthy-cast."""
    with pytest.raises(DatasetError):
        hamming_distance([0, 2], [0, 1])
    with pytest.raises(DatasetError):
        hamming_distance(np.array([0, 2]), np.array([0, 1]))
    with pytest.raises(DatasetError):
        pairwise_hamming(np.array([[0, 2], [0, 1]]))
    assert hamming_distance(np.array([0, 1]), np.array([1, 1])) == 1


def test_pairwise_hamming_matches_scalar_distance():
    data = PointCollection(FOUR_POINTS)
    distances = pairwise_hamming(data.matrix)

    assert distances.tolist() == [
        [0, 1, 3, 4],
        [1, 0, 4, 3],
        [3, 4, 0, 1],
        [4, 3, 1, 0],
    ]

    rng = np.random.default_rng(7)
    matrix = rng.random((12, 9)) < 0.5
    distances = pairwise_hamming(matrix)
    for i in range(12):
        for j in range(12):
            assert distances[i, j] == hamming_distance(matrix[i], matrix[j])


def test_nearest_cross_cluster_skips_own_cluster():
    data = PointCollection(FOUR_POINTS)
    distances = pairwise_hamming(data.matrix)

    neighbours, nearest = nearest_cross_cluster(distances, np.array([0, 1, 2, 3]))
    assert neighbours.tolist() == [1, 0, 3, 2]
    assert nearest.tolist() == [1, 1, 1, 1]
    assert select_candidate(neighbours, nearest) == (0, 1, 1)

    neighbours, nearest = nearest_cross_cluster(distances, np.array([0, 0, 2, 3]))
    assert neighbours.tolist() == [2, 3, 3, 2]
    assert nearest.tolist() == [3, 3, 1, 1]
    assert select_candidate(neighbours, nearest) == (2, 3, 1)


def test_no_candidate_when_single_cluster_or_too_few_points():
    data = PointCollection(FOUR_POINTS)
    distances = pairwise_hamming(data.matrix)

    neighbours, nearest = nearest_cross_cluster(distances, np.zeros(4, dtype=np.int64))
    assert select_candidate(neighbours, nearest) is None

    single = PointCollection([("01", None)])
    neighbours, nearest = nearest_cross_cluster(pairwise_hamming(single.matrix), np.array([0]))
    assert select_candidate(neighbours, nearest) is None

    neighbours, nearest = nearest_cross_cluster(np.zeros((0, 0)), np.zeros(0, dtype=np.int64))
    assert select_candidate(neighbours, nearest) is None


def test_ranked_neighbours_orders_by_distance_then_index():
    data = PointCollection([("0000", None), ("0011", None), ("0001", None), ("1000", None)])
    distances = pairwise_hamming(data.matrix)

    assert ranked_neighbours(distances, np.array([0, 1, 2, 3]), 0) == [2, 3, 1]
    assert ranked_neighbours(distances, np.array([0, 1, 0, 3]), 0) == [3, 1]


def test_labels_conflict():
    assert labels_conflict({Label.MALWARE}, {Label.ACCEPT})
    assert labels_conflict({Label.ACCEPT}, {Label.MALWARE})
    assert not labels_conflict({Label.MALWARE}, {Label.MALWARE})
    assert not labels_conflict(set(), {Label.ACCEPT})
    assert not labels_conflict(set(), set())


def test_merge_allowed_uses_whole_cluster_labels():
    """An unlabeled point inherits the veto of the cluster it has joined."""
    data, assignment, _ = make([("0000", "malware"), ("0001", None), ("0011", "accept")])

    assert merge_allowed(data, assignment, 1, 2)
    assignment.union(0, 1)
    assert not merge_allowed(data, assignment, 1, 2)


def test_attempt_merge_retries_with_next_nearest():
    data, assignment, ledger = make([("0000", "accept"), ("0001", "malware"), ("0011", None)])
    distances = pairwise_hamming(data.matrix)

    attempt = attempt_merge(data, assignment, ledger, distances, 0, 1, eta=1, iteration=1)

    assert attempt.merged
    assert attempt.pair == (0, 2)
    assert attempt.distance == 2
    assert attempt.retries == 1
    assert assignment.ids == [0, 1, 0]

    (record,) = ledger.records()
    assert record.initial_indices == (0, 1)
    assert record.resolve_indices == (0, 2)
    assert record.initial == (data[0].coords, data[1].coords)
    assert record.resolve == (data[0].coords, data[2].coords)
    assert record.iteration == 1


def test_attempt_merge_with_zero_eta_writes_no_records():
    data, assignment, ledger = make([("0000", "accept"), ("0001", "malware"), ("0011", None)])
    distances = pairwise_hamming(data.matrix)

    attempt = attempt_merge(data, assignment, ledger, distances, 0, 1, eta=0)

    assert not attempt.merged
    assert attempt.pair == (0, 1)
    assert len(ledger) == 0
    assert assignment.ids == [0, 1, 2]


def test_attempt_merge_stops_when_neighbours_run_out():
    """A large budget still stops once every alternate has been vetoed."""
    data, assignment, ledger = make([("0000", "accept"), ("0001", "malware"), ("0011", "malware")])
    distances = pairwise_hamming(data.matrix)

    attempt = attempt_merge(data, assignment, ledger, distances, 0, 1, eta=10)

    assert not attempt.merged
    assert attempt.pair == (0, 2)
    assert attempt.retries == 1
    assert len(ledger) == 1


def test_run_training_worked_example():
    """[0000, 0001, 1110, 1111] with eta=1 ends with two clusters."""
    data, assignment, ledger = make(FOUR_POINTS)
    observed = []

    stats = run_training(
        data, assignment, ledger, eta=1,
        on_iteration=lambda it, a: observed.append(a.ids),
    )

    assert observed == [[0, 0, 2, 3], [0, 0, 2, 2]]
    assert assignment.ids == [0, 0, 2, 2]
    assert stats["merges"] == 2
    assert stats["clusters"] == 2
    assert stats["retries"] == 0
    assert stats["stop_reason"] == STOP_DISTANCE_INCREASE
    assert len(ledger) == 0


def test_run_training_without_distance_stop_merges_everything():
    data, assignment, ledger = make(FOUR_POINTS)

    stats = run_training(data, assignment, ledger, eta=1, stop_on_distance_increase=False)

    assert assignment.ids == [0, 0, 0, 0]
    assert stats["merges"] == 3
    assert stats["stop_reason"] == STOP_NO_CANDIDATE


def test_run_training_target_clusters():
    data, assignment, ledger = make(FOUR_POINTS)

    stats = run_training(data, assignment, ledger, eta=1, target_clusters=3)

    assert assignment.ids == [0, 0, 2, 3]
    assert stats["stop_reason"] == STOP_TARGET_REACHED


def test_run_training_label_veto_with_zero_eta():
    data, assignment, ledger = make([("0000", "accept"), ("0001", "malware")])

    stats = run_training(data, assignment, ledger, eta=0)

    assert assignment.ids == [0, 1]
    assert stats["merges"] == 0
    assert stats["stop_reason"] == STOP_RETRIES_EXHAUSTED
    assert len(ledger) == 0


def test_run_training_trivial_inputs():
    for points in ([], [("0101", "malware")]):
        data, assignment, ledger = make(points)
        stats = run_training(data, assignment, ledger, eta=3)
        assert stats["merges"] == 0
        assert stats["stop_reason"] == STOP_NO_CANDIDATE


def test_run_training_rejects_negative_eta():
    data, assignment, ledger = make(FOUR_POINTS)
    with pytest.raises(ValueError):
        run_training(data, assignment, ledger, eta=-1)


def test_retry_bound_per_candidate():
    """One accept point surrounded by malware: retries stop at eta."""
    data, assignment, ledger = make([
        ("0000", "accept"),
        ("0001", "malware"),
        ("0010", "malware"),
        ("0100", "malware"),
        ("1000", "malware"),
    ])

    stats = run_training(data, assignment, ledger, eta=2)

    assert len(ledger) == 2
    assert [r.resolve_indices for r in ledger] == [(0, 2), (0, 3)]
    assert stats["stop_reason"] == STOP_RETRIES_EXHAUSTED
    assert assignment.ids == [0, 1, 2, 3, 4]


def test_invariants_on_random_labelled_data():
    """Partition, monotone coarsening, label veto and retry bound on random data."""
    rng = np.random.default_rng(42)
    n, dim, eta = 40, 10, 3
    labels = [None, None, "malware", "accept"]
    points = [
        ("".join("1" if b else "0" for b in rng.random(dim) < 0.5), labels[rng.integers(4)])
        for _ in range(n)
    ]
    data, assignment, ledger = make(points)

    counts = [assignment.num_clusters]

    def check(iteration, current):
        ids = current.ids
        assert len(ids) == n
        members = sorted(m for group in current.clusters().values() for m in group)
        assert members == list(range(n))
        assert current.num_clusters < counts[-1]
        counts.append(current.num_clusters)
        assert len(ledger.for_iteration(iteration)) <= eta

    stats = run_training(
        data, assignment, ledger, eta=eta,
        stop_on_distance_increase=False,
        on_iteration=check,
    )

    assert stats["merges"] == len(counts) - 1
    for group in assignment.clusters().values():
        group_labels = {data[m].label for m in group}
        assert not (Label.MALWARE in group_labels and Label.ACCEPT in group_labels)

    for iteration in {r.iteration for r in ledger}:
        assert len(ledger.for_iteration(iteration)) <= eta
