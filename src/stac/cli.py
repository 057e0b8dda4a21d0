"""
STAC CLI - train on a boolean dataset and answer same-cluster queries.

Usage:
    stac train points.yaml --eta 2
    stac train points.yaml --config stac.yaml --output result.yaml
    stac query points.yaml 0001 0011
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from .clustering import STAC, format_coords
from .config import StacConfig
from .dataset import load_points, dump_result
from .logger import TrainingLogger


def build_config(args) -> StacConfig:
    """Load config file (if any) and apply command-line overrides."""
    config = StacConfig.from_yaml(Path(args.config)) if args.config else StacConfig()

    overrides = config.to_dict()
    if args.eta is not None:
        overrides['eta'] = args.eta
    if args.target_clusters is not None:
        overrides['target_clusters'] = args.target_clusters
    if args.no_distance_stop:
        overrides['stop_on_distance_increase'] = False
    if args.log_dir:
        overrides['log_dir'] = args.log_dir
    if args.verbose:
        overrides['verbose'] = True

    return StacConfig.from_dict(overrides)


def train_model(args) -> STAC:
    """Load the dataset and train a model with the configured options."""
    config = build_config(args)
    points = load_points(Path(args.dataset))

    logger = TrainingLogger(Path(config.log_dir)) if config.log_dir else None
    try:
        model = STAC(points, config=config, logger=logger)
        model.train(config.eta)
    finally:
        if logger:
            logger.close()

    if args.output:
        dump_result(model, Path(args.output))

    return model


def cmd_train(args):
    """Train and print the resulting clusters."""
    model = train_model(args)
    status = model.get_status()
    stats = status["stats"]

    print(f"Points: {status['n_points']} (dimension {status['dimension']})")
    print(f"Clusters: {status['num_clusters']}")
    print(f"Merges: {stats['merges']}, retries: {stats['retries']}, stopped: {stats['stop_reason']}")
    print("-" * 40)
    for cluster_id, members in sorted(model.clusters().items()):
        coords = ", ".join(format_coords(model.points[m].coords) for m in members)
        print(f"[{cluster_id}] {coords}")

    if args.output:
        print(f"Result written to {args.output}")

    return 0


def cmd_query(args):
    """Train, then report whether two points share a cluster."""
    model = train_model(args)
    print(model.same_cluster(args.point_a, args.point_b).value)
    return 0


def add_training_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("dataset", help="YAML dataset of points")
    parser.add_argument("--eta", type=int, help="Retry budget per candidate merge")
    parser.add_argument("--target-clusters", type=int, help="Stop once this many clusters remain")
    parser.add_argument("--no-distance-stop", action="store_true",
                        help="Keep merging after the merge distance increases")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--log-dir", help="Directory for the JSONL training log")
    parser.add_argument("--output", help="Write the result as YAML")
    parser.add_argument("--verbose", action="store_true", help="Print training progress")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="STAC - Semisupervised Ternary Agglomerative Clustering"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # train
    p_train = subparsers.add_parser("train", help="Train and print clusters")
    add_training_options(p_train)

    # query
    p_query = subparsers.add_parser("query", help="Train and check whether two points are linked")
    add_training_options(p_query)
    p_query.add_argument("point_a", help="Bit string of the first point")
    p_query.add_argument("point_b", help="Bit string of the second point")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Dispatch
    commands = {
        "train": cmd_train,
        "query": cmd_query,
    }

    try:
        return commands[args.command](args)
    except Exception as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
