"""
Structured logging for STAC training runs.

Single JSONL file with typed events for streaming and analysis.

Event types:
- train_start: Dataset size, dimension, eta
- merge: Accepted merge (pair, distance, clusters remaining)
- retry: Vetoed pair and the alternate tried next
- train_end: Summary stats
- train_failed: Run raised; assignment was reset
- train_rejected: train called while not ready
- data_replaced: Dataset swapped for a new one
"""

import json
from pathlib import Path
from datetime import datetime
from typing import Any


class TrainingLogger:
    def __init__(self, output_dir: Path):
        """
        Initialize logger for training runs.

        Args:
            output_dir: Directory for log files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.output_dir / "training.jsonl"

        # Open file in append mode
        self.file_handle = open(self.log_file, 'a')

    def _write_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Write typed event to JSONL log."""
        event = {
            "type": event_type,
            "timestamp": datetime.now().isoformat(),
            **data
        }
        self.file_handle.write(json.dumps(event) + '\n')
        self.file_handle.flush()

    def log_train_start(self, n_points: int, dimension: int, eta: int) -> None:
        self._write_event("train_start", {
            "n_points": n_points,
            "dimension": dimension,
            "eta": eta,
        })

    def log_merge(self, iteration: int, pair: tuple[int, int], distance: int, num_clusters: int) -> None:
        """
        Log an accepted merge.

        Args:
            iteration: Training iteration
            pair: Point indices merged
            distance: Hamming distance between them
            num_clusters: Clusters remaining after the merge
        """
        self._write_event("merge", {
            "iteration": iteration,
            "pair": list(pair),
            "distance": distance,
            "num_clusters": num_clusters,
        })

    def log_retry(
        self,
        iteration: int,
        initial: tuple[int, int],
        resolve: tuple[int, int],
        remaining_budget: int,
    ) -> None:
        """
        Log a vetoed merge and its substitute.

        Args:
            iteration: Training iteration
            initial: Pair that was vetoed
            resolve: Pair tried next
            remaining_budget: Retries left for this candidate
        """
        self._write_event("retry", {
            "iteration": iteration,
            "initial": list(initial),
            "resolve": list(resolve),
            "remaining_budget": remaining_budget,
        })

    def log_train_end(self, stats: dict[str, Any]) -> None:
        self._write_event("train_end", {"stats": stats})

    def log_train_failed(self, error: str) -> None:
        self._write_event("train_failed", {"error": error})

    def log_train_rejected(self, job_state: str) -> None:
        self._write_event("train_rejected", {"job": job_state})

    def log_data_replaced(self, n_points: int) -> None:
        self._write_event("data_replaced", {"n_points": n_points})

    def close(self) -> None:
        """Close log file."""
        if hasattr(self, 'file_handle') and self.file_handle:
            self.file_handle.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
