"""
STAC aggregate: points, cluster assignment, retry ledger and job state.

Owns the ready -> pending -> done lifecycle. Training and dataset
replacement are serialized on one condition variable; queries only read a
finished assignment.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

from ..config import StacConfig
from ..errors import DatasetError, TrainingFailedError, TrainingInProgressError
from .models import (
    ClusterAssignment,
    Connection,
    JobState,
    LabelledPoint,
    PointCollection,
    RetryLedger,
    RetryRecord,
    TrainOutcome,
)
from .algorithm import (
    ConflictRule,
    labels_conflict,
    run_training,
)


class STAC:
    """
    Semisupervised Ternary Agglomerative Clustering over boolean points.

    Usage:
        model = STAC(points)
        model.train(eta=2)
        model.same_cluster("0001", "0011")   # Connection.LINKED / SEPARATE / UNKNOWN
    """

    def __init__(
        self,
        points: Iterable[LabelledPoint],
        conflict_rule: ConflictRule = labels_conflict,
        config: Optional[StacConfig] = None,
        logger=None,
    ):
        self.config = config or StacConfig()
        self.conflict_rule = conflict_rule
        self.logger = logger

        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._install(PointCollection(points))

    def _install(self, data: PointCollection) -> None:
        """Swap in a fresh aggregate for data. Caller holds the lock (or is __init__)."""
        self._data = data
        self._result = ClusterAssignment.initialize(len(data))
        self._ledger = RetryLedger()
        self.last_stats: Optional[dict] = None
        self.last_error: Optional[Exception] = None

    @property
    def job(self) -> JobState:
        with self._condition:
            return self._result.job

    @property
    def points(self) -> PointCollection:
        return self._data

    @property
    def cluster_ids(self) -> Optional[list[int]]:
        """Cluster id per point once training is done, else None."""
        with self._condition:
            if self._result.job is not JobState.DONE:
                return None
            return self._result.ids

    @property
    def retry_ledger(self) -> Optional[tuple[RetryRecord, ...]]:
        """Retry records of the finished run, else None."""
        with self._condition:
            if self._result.job is not JobState.DONE:
                return None
            return self._ledger.records()

    def clusters(self) -> Optional[dict[int, list[int]]]:
        """Cluster id -> member indices once training is done, else None."""
        with self._condition:
            if self._result.job is not JobState.DONE:
                return None
            return self._result.clusters()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _begin(self) -> bool:
        """Atomically move ready -> pending. False if not ready."""
        with self._condition:
            if self._result.job is not JobState.READY:
                return False
            self._result.job = JobState.PENDING
            self.last_error = None
            return True

    def _resolve_eta(self, eta: Optional[int]) -> int:
        eta = self.config.eta if eta is None else eta
        if eta < 0:
            raise ValueError(f"eta must be non-negative, got {eta}")
        return eta

    def _reject(self) -> TrainOutcome:
        job = self.job
        if self.logger:
            self.logger.log_train_rejected(job.value)
        if self.config.verbose:
            print(f"Training rejected: job is {job.value}, not ready")
        return TrainOutcome.NOT_READY

    def _run(self, eta: int) -> None:
        # update_data waits for pending runs, so these stay bound to this run
        data, result, ledger = self._data, self._result, self._ledger

        if self.logger:
            self.logger.log_train_start(len(data), data.dimension, eta)

        try:
            stats = run_training(
                data,
                result,
                ledger,
                eta,
                conflict_rule=self.conflict_rule,
                target_clusters=self.config.target_clusters,
                stop_on_distance_increase=self.config.stop_on_distance_increase,
                logger=self.logger,
                verbose=self.config.verbose,
            )
        except Exception as e:
            with self._condition:
                # Partial merges are discarded; the job is ready to train again
                self._install(data)
                self.last_error = e
                self._condition.notify_all()
            if self.logger:
                self.logger.log_train_failed(repr(e))
            raise

        with self._condition:
            self.last_stats = stats
            result.job = JobState.DONE
            self._condition.notify_all()

        if self.logger:
            self.logger.log_train_end(stats)

    def train(self, eta: Optional[int] = None) -> TrainOutcome:
        """
        Train to completion on the calling thread.

        Args:
            eta: Retry budget per selected candidate (default: config.eta)

        Returns:
            TrainOutcome.TRAINED, or TrainOutcome.NOT_READY if the job was
            not ready (state is left unchanged)

        Raises:
            Whatever the training run raised (e.g. from conflict_rule). The
            assignment is reset and the job is ready again.
        """
        eta = self._resolve_eta(eta)
        if not self._begin():
            return self._reject()
        self._run(eta)
        return TrainOutcome.TRAINED

    def train_in_background(self, eta: Optional[int] = None) -> TrainOutcome:
        """
        Start training on a daemon thread. Returns STARTED or NOT_READY.

        A failed run is reset as in train(); wait_until_done reports it.
        """
        eta = self._resolve_eta(eta)
        if not self._begin():
            return self._reject()

        self._thread = threading.Thread(
            target=self._run,
            args=(eta,),
            name="stac-train",
            daemon=True,
        )
        self._thread.start()
        return TrainOutcome.STARTED

    def wait_until_done(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no run is pending. True if the job is done.

        Raises:
            TrainingFailedError: the last run raised (original as __cause__)
        """
        with self._condition:
            self._condition.wait_for(
                lambda: self._result.job is not JobState.PENDING,
                timeout,
            )
            if self.last_error is not None:
                raise TrainingFailedError(
                    f"Training failed: {self.last_error!r}"
                ) from self.last_error
            return self._result.job is JobState.DONE

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def same_cluster(self, a, b) -> Connection:
        """
        Check whether the points with coordinates a and b share a cluster.

        Returns UNKNOWN while training is not done or if either point is not
        in the dataset. Never mutates state.
        """
        with self._condition:
            if self._result.job is not JobState.DONE:
                return Connection.UNKNOWN
            data, result = self._data, self._result

        try:
            a_index = data.index_of(a)
            b_index = data.index_of(b)
        except DatasetError:
            # Malformed coordinates cannot be in the dataset
            return Connection.UNKNOWN

        if a_index is None or b_index is None:
            return Connection.UNKNOWN

        return Connection.LINKED if result.same(a_index, b_index) else Connection.SEPARATE

    # ------------------------------------------------------------------
    # Dataset replacement
    # ------------------------------------------------------------------

    def update_data(
        self,
        new_points: Iterable[LabelledPoint],
        timeout: Optional[float] = None,
    ) -> None:
        """
        Replace the dataset, discarding the assignment and retry ledger.

        Waits for any pending run to finish first; the job is ready afterwards.

        Raises:
            TrainingInProgressError: timeout expired while a run was pending
        """
        data = PointCollection(new_points)

        with self._condition:
            finished = self._condition.wait_for(
                lambda: self._result.job is not JobState.PENDING,
                timeout,
            )
            if not finished:
                raise TrainingInProgressError(
                    f"Training still pending after {timeout}s; dataset not replaced"
                )
            self._install(data)

        if self.logger:
            self.logger.log_data_replaced(len(data))

    def get_status(self) -> dict:
        """Get a summary of the aggregate."""
        with self._condition:
            job = self._result.job
            status = {
                "job": job.value,
                "n_points": len(self._data),
                "dimension": self._data.dimension,
                "num_clusters": self._result.num_clusters if job is JobState.DONE else None,
                "retries": len(self._ledger) if job is JobState.DONE else None,
                "stats": dict(self.last_stats) if self.last_stats else None,
            }
        return status
