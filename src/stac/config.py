"""
Configuration for STAC training runs.
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

import yaml

__all__ = [
    "StacConfig",
    "DEFAULT_ETA",
]

DEFAULT_ETA = 1


@dataclass
class StacConfig:
    """
    Configuration for a STAC training run.

    stop_on_distance_increase ends training as soon as the closest
    cross-cluster pair is farther apart than the last accepted merge. With
    the default (True), only pairs at or below the first accepted merge
    distance are ever joined (a vetoed pair's alternate may set a larger
    one). Set it to False to merge until no legal merge is left.

    log_dir is read by the CLI only, which opens a TrainingLogger there;
    STAC itself logs to the logger passed to its constructor.
    """

    # Retry budget per selected candidate
    eta: int = DEFAULT_ETA

    # Termination - None = disabled
    target_clusters: Optional[int] = None
    stop_on_distance_increase: bool = True

    # Output
    verbose: bool = False
    log_dir: Optional[str] = None  # CLI only

    def __post_init__(self):
        if self.eta < 0:
            raise ValueError(f"eta must be non-negative, got {self.eta}")
        if self.target_clusters is not None and self.target_clusters < 1:
            raise ValueError(f"target_clusters must be at least 1, got {self.target_clusters}")

    def to_dict(self) -> dict:
        """Convert to YAML/JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StacConfig":
        """Create from dict, filtering out unknown keys."""
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)

    @classmethod
    def from_yaml(cls, path: Path) -> "StacConfig":
        """Load from a YAML file. An empty file gives the defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        return cls.from_dict(data)

    def to_yaml(self, path: Path) -> None:
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
