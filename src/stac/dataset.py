"""
Dataset files for STAC.

Points are read from YAML:

    points:
      - coords: "0001"      # bit string or list of 0/1/true/false
        label: malware      # optional: malware | accept
      - coords: [1, 1, 1, 0]

Results are written back as YAML with atomic writes.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

import yaml

from .errors import DatasetError
from .clustering.models import LabelledPoint
from .clustering.manager import STAC


def parse_points(data) -> list[LabelledPoint]:
    """Build points from the decoded YAML document (a mapping or a bare list)."""
    if isinstance(data, dict):
        data = data.get("points")
    if not isinstance(data, list):
        raise DatasetError("Dataset must contain a 'points' list")

    points = []
    for i, entry in enumerate(data):
        if isinstance(entry, dict):
            if "coords" not in entry:
                raise DatasetError(f"Point {i} has no 'coords'")
            coords, label = entry["coords"], entry.get("label")
        else:
            coords, label = entry, None

        # YAML reads unquoted 0101 as an int; require strings or lists
        if not isinstance(coords, (str, list)):
            raise DatasetError(f"Point {i}: coords must be a quoted bit string or a list")
        points.append(LabelledPoint.create(coords, label))

    return points


def load_points(path: Path) -> list[LabelledPoint]:
    """Load points from a YAML dataset file."""
    path = Path(path)
    if not path.exists():
        raise DatasetError(f"Dataset not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise DatasetError(f"Invalid YAML in {path}: {e}") from e

    return parse_points(data)


def dump_points(points: list[LabelledPoint], path: Path) -> None:
    """Write points in the dataset format."""
    _atomic_yaml_dump({"points": [p.to_dict() for p in points]}, Path(path))


def result_to_dict(model: STAC) -> dict:
    """Snapshot of a model's assignment, clusters and retries."""
    status = model.get_status()
    ledger = model.retry_ledger
    return {
        "job": status["job"],
        "n_points": status["n_points"],
        "assignment": model.cluster_ids,
        "clusters": model.clusters(),
        "retries": [r.to_dict() for r in ledger] if ledger is not None else None,
        "stats": status["stats"],
    }


def dump_result(model: STAC, path: Path) -> None:
    """Write a model's result as YAML."""
    _atomic_yaml_dump(result_to_dict(model), Path(path))


def _atomic_yaml_dump(data: dict, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode='w', dir=path.parent, suffix='.tmp', delete=False
    ) as f:
        temp_path = Path(f.name)
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    shutil.move(str(temp_path), str(path))
