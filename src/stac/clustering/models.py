"""
Data models for STAC clustering.

Defines points, the cluster assignment with its job state, and the retry ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Union

import numpy as np

from ..errors import DatasetError, DimensionMismatchError


class Label(str, Enum):
    """Closed label set. Labels only veto merges."""

    MALWARE = "malware"
    ACCEPT = "accept"

    @classmethod
    def parse(cls, value: Union[str, "Label", None]) -> Optional["Label"]:
        if value is None or isinstance(value, Label):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise DatasetError(f"Unknown label: {value!r}") from None


class JobState(str, Enum):
    """Lifecycle of one cluster assignment."""

    READY = "ready"
    PENDING = "pending"
    DONE = "done"


class Connection(str, Enum):
    """Answer to a same-cluster query."""

    LINKED = "linked"
    SEPARATE = "separate"
    UNKNOWN = "unknown"


class TrainOutcome(str, Enum):
    TRAINED = "trained"
    STARTED = "started"
    NOT_READY = "not_ready"


Coords = tuple[bool, ...]


def parse_coords(value) -> Coords:
    """
    Normalise a point's coordinates to a tuple of bools.

    Accepts bit strings ("0101"), sequences of bools or 0/1 ints, and numpy arrays.
    """
    if isinstance(value, str):
        text = value.strip()
        if any(c not in "01" for c in text):
            raise DatasetError(f"Bit string may only contain 0 and 1: {value!r}")
        return tuple(c == "1" for c in text)

    if isinstance(value, np.ndarray):
        value = value.tolist()

    try:
        items = iter(value)
    except TypeError:
        raise DatasetError(f"Coordinates must be a bit string or a sequence, got {value!r}") from None

    coords = []
    for v in items:
        if isinstance(v, (bool, np.bool_)):
            coords.append(bool(v))
        elif v in (0, 1):
            coords.append(v == 1)
        else:
            raise DatasetError(f"Coordinate must be boolean or 0/1, got {v!r}")
    return tuple(coords)


def format_coords(coords: Sequence[bool]) -> str:
    """Render coordinates as a bit string."""
    return "".join("1" if c else "0" for c in coords)


@dataclass(frozen=True)
class LabelledPoint:
    """A point in boolean space with an optional label."""

    coords: Coords
    label: Optional[Label] = None

    @classmethod
    def create(cls, coords, label=None) -> LabelledPoint:
        return cls(coords=parse_coords(coords), label=Label.parse(label))

    @property
    def dimension(self) -> int:
        return len(self.coords)

    def to_dict(self) -> dict:
        return {
            "coords": format_coords(self.coords),
            "label": self.label.value if self.label else None,
        }


class PointCollection:
    """
    Ordered, immutable collection of points indexed 0..N-1.

    All points must share one dimension. The boolean matrix is built once
    and marked read-only.
    """

    def __init__(self, points: Iterable[Union[LabelledPoint, tuple]]):
        normalised = []
        for p in points:
            if isinstance(p, LabelledPoint):
                normalised.append(p)
            else:
                # (coords, label) pair
                coords, label = p
                normalised.append(LabelledPoint.create(coords, label))
        self._points: tuple[LabelledPoint, ...] = tuple(normalised)

        dims = {p.dimension for p in self._points}
        if len(dims) > 1:
            raise DimensionMismatchError(
                f"All points must share one dimension, got {sorted(dims)}"
            )
        self.dimension = dims.pop() if dims else 0

        self.matrix = np.array(
            [p.coords for p in self._points], dtype=bool
        ).reshape(len(self._points), self.dimension)
        self.matrix.setflags(write=False)

    def __len__(self) -> int:
        return len(self._points)

    def __getitem__(self, index: int) -> LabelledPoint:
        return self._points[index]

    def __iter__(self):
        return iter(self._points)

    @property
    def labels(self) -> list[Optional[Label]]:
        return [p.label for p in self._points]

    def index_of(self, coords) -> Optional[int]:
        """Index of the first point with exactly these coordinates, or None."""
        target = parse_coords(coords)
        for i, p in enumerate(self._points):
            if p.coords == target:
                return i
        return None


class ClusterAssignment:
    """
    Maps point index -> cluster id, plus the job state gating queries.

    Starts as the discrete partition. Only union() changes ids, and it
    rewrites every member of both clusters, so the ids always partition
    the index set.
    """

    def __init__(self, ids: Sequence[int], job: JobState = JobState.READY):
        self._ids = np.asarray(ids, dtype=np.int64).copy()
        self.job = job

    @classmethod
    def initialize(cls, n: int) -> ClusterAssignment:
        return cls(np.arange(n, dtype=np.int64))

    def __len__(self) -> int:
        return len(self._ids)

    def find(self, i: int) -> int:
        return int(self._ids[i])

    def same(self, i: int, j: int) -> bool:
        return bool(self._ids[i] == self._ids[j])

    def union(self, i: int, j: int) -> bool:
        """Merge the clusters holding i and j. Returns False if already joined."""
        a, b = self.find(i), self.find(j)
        if a == b:
            return False
        keep, drop = min(a, b), max(a, b)
        self._ids[self._ids == drop] = keep
        return True

    def members(self, cluster_id: int) -> list[int]:
        return np.flatnonzero(self._ids == cluster_id).tolist()

    def clusters(self) -> dict[int, list[int]]:
        """Cluster id -> sorted member indices."""
        result: dict[int, list[int]] = {}
        for i, cid in enumerate(self._ids.tolist()):
            result.setdefault(cid, []).append(i)
        return result

    @property
    def num_clusters(self) -> int:
        return len(np.unique(self._ids))

    @property
    def ids(self) -> list[int]:
        return self._ids.tolist()

    def as_array(self) -> np.ndarray:
        """Read-only view of the ids."""
        view = self._ids.view()
        view.setflags(write=False)
        return view


@dataclass(frozen=True)
class RetryRecord:
    """A vetoed merge (initial) and the alternate tried next (resolve)."""

    initial: tuple[Coords, Coords]
    resolve: tuple[Coords, Coords]
    initial_indices: tuple[int, int]
    resolve_indices: tuple[int, int]
    iteration: int

    def to_dict(self) -> dict:
        return {
            "iteration": self.iteration,
            "initial": [format_coords(c) for c in self.initial],
            "resolve": [format_coords(c) for c in self.resolve],
            "initial_indices": list(self.initial_indices),
            "resolve_indices": list(self.resolve_indices),
        }


class RetryLedger:
    """Append-only log of retry records for one training run."""

    def __init__(self):
        self._records: list[RetryRecord] = []

    def append(self, record: RetryRecord) -> None:
        self._records.append(record)

    def records(self) -> tuple[RetryRecord, ...]:
        return tuple(self._records)

    def for_iteration(self, iteration: int) -> list[RetryRecord]:
        return [r for r in self._records if r.iteration == iteration]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(tuple(self._records))

    def to_list(self) -> list[dict]:
        return [r.to_dict() for r in self._records]
