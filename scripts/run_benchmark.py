#!/usr/bin/env python3
"""
Benchmark script: resample several learners on a CSV dataset.

Every learner is resampled with the same instantiated splits; the script
prints the per-experiment aggregate table and optionally writes the
per-iteration scores to CSV.

Usage:
    python scripts/run_benchmark.py --data data/iris.csv --target species \\
        --task-type classif --learners classif.featureless classif.log_reg

    # With a config file and custom measures
    python scripts/run_benchmark.py --data data/cars.csv --target mpg \\
        --task-type regr --learners regr.featureless regr.lm \\
        --config configs/store.yaml --measures regr.rmse regr.mse.ci \\
        --output-dir outputs/cars
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

# Add src to path for local development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from expstore import (
    ResamplingCV,
    StoreConfig,
    TaskClassif,
    TaskRegr,
    benchmark,
    benchmark_grid,
    create_learner,
    load_config,
    set_seed,
)


def setup_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark learners on a CSV dataset")
    parser.add_argument("--data", type=Path, required=True, help="CSV file with features and target")
    parser.add_argument("--target", type=str, required=True, help="Target column")
    parser.add_argument("--task-type", choices=["classif", "regr"], required=True)
    parser.add_argument("--learners", nargs="+", required=True, help="Learner keys")
    parser.add_argument("--measures", nargs="*", default=None, help="Measure keys (default: from config)")
    parser.add_argument("--folds", type=int, default=3, help="Cross-validation folds")
    parser.add_argument("--config", type=Path, default=None, help="Config file (.yaml or .json)")
    parser.add_argument("--seed", type=int, default=None, help="Override config seed")
    parser.add_argument("--n-jobs", type=int, default=None, help="Override config n_jobs")
    parser.add_argument("--output-dir", type=Path, default=None, help="Write scores.csv and aggregate.csv here")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    config = load_config(str(args.config)) if args.config else StoreConfig()
    if args.seed is not None:
        config.execution.seed = args.seed
    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    if config.execution.seed is not None:
        set_seed(config.execution.seed)

    df = pd.read_csv(args.data)
    task_cls = TaskClassif if args.task_type == "classif" else TaskRegr
    task = task_cls(args.data.stem, df, target=args.target)
    learners = [create_learner(key) for key in args.learners]
    resampling = ResamplingCV(folds=args.folds, seed=config.execution.seed)

    logger.info(f"Task {task.id}: {task.nrow} rows, {len(task.feature_names)} features")

    design = benchmark_grid([task], learners, [resampling])
    bmr = benchmark(design, n_jobs=args.n_jobs, config=config)

    aggregate = bmr.aggregate(args.measures)
    print("\n" + "=" * 70)
    print(aggregate.drop(columns=["uhash"]).to_string(index=False))
    print("=" * 70)

    if args.output_dir:
        args.output_dir.mkdir(parents=True, exist_ok=True)
        scores = bmr.score(args.measures, predictions=False).drop(columns=["task", "learner", "resampling"])
        scores.to_csv(args.output_dir / "scores.csv", index=False)
        aggregate.to_csv(args.output_dir / "aggregate.csv", index=False)
        logger.info(f"Saved results to {args.output_dir}")

    n_errors = sum(len(rr.errors) for rr in bmr.resample_results)
    if n_errors:
        logger.warning(f"{n_errors} iteration errors were recorded")
    return 0


if __name__ == "__main__":
    sys.exit(main())
