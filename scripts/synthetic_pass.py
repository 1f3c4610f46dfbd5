from __future__ import annotations

import argparse
from typing import Dict, List, Tuple

import numpy as np

from scripts._common import load_kernel_config, print_json

from fmkernel.metrics import mean_squared_error, sample_losses  # noqa: E402
from fmkernel.models import FactorizationMachinesModel, ModelSnapshot  # noqa: E402
from fmkernel.utils import config_hash, set_seed  # noqa: E402


def _random_snapshot(rng: np.random.Generator, num_features: int, k: int, coverage: float, sd: float) -> ModelSnapshot:
    known = np.flatnonzero(rng.random(num_features) < coverage)
    strengths = {int(fid): float(rng.normal(0.0, sd)) for fid in known}
    interactions = {int(fid): rng.normal(0.0, sd, size=k).tolist() for fid in known}
    return ModelSnapshot.from_tables(k=k, bias=float(rng.normal(0.5, sd)), strengths=strengths, interactions=interactions)


def _random_records(
    rng: np.random.Generator, num_samples: int, num_features: int, nnz: int, features_col: str, label_col: str
) -> List[Dict]:
    records = []
    for _ in range(num_samples):
        size = int(rng.integers(0, nnz + 1))
        ids = rng.choice(num_features, size=min(size, num_features), replace=False)
        records.append(
            {
                features_col: {int(fid): float(rng.random()) for fid in ids},
                label_col: float(rng.integers(0, 2)),
            }
        )
    return records


def _labels_and_predictions(rows: List[Dict], label_col: str, prediction_col: str) -> Tuple[np.ndarray, np.ndarray]:
    return np.array([r[label_col] for r in rows]), np.array([r[prediction_col] for r in rows])


def main() -> None:
    parser = argparse.ArgumentParser(description="Score and compute loss gradients for a synthetic batch.")
    parser.add_argument("--config", default="configs/kernel.yaml")
    parser.add_argument("--samples", type=int, default=1000)
    parser.add_argument("--num-features", type=int, default=500)
    parser.add_argument("--nnz", type=int, default=20, help="Max active features per sample.")
    parser.add_argument("--k", type=int, default=8)
    parser.add_argument("--coverage", type=float, default=0.9, help="Share of feature ids present in the tables.")
    parser.add_argument("--initial-sd", type=float, default=0.01)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    overrides = {"seed": args.seed} if args.seed is not None else {}
    cfg = load_kernel_config(args.config, overrides)
    seed = cfg.seed if cfg.seed is not None else 2026
    generator = set_seed(seed)
    rng = np.random.default_rng(seed)

    snapshot = _random_snapshot(rng, args.num_features, args.k, args.coverage, args.initial_sd)
    records = _random_records(rng, args.samples, args.num_features, args.nnz, cfg.features_col, cfg.label_col)
    model = FactorizationMachinesModel(snapshot, cfg)

    scored = model.transform(records)
    y_true, y_pred = _labels_and_predictions(scored, cfg.label_col, cfg.prediction_col)
    grads = model.calc_loss_grad(records, initial_sd=args.initial_sd, generator=generator)
    losses = sample_losses(grads)

    print_json(
        {
            "config_hash": config_hash(cfg.to_dict()),
            "samples": len(scored),
            "k": snapshot.k,
            "strength_entries": len(snapshot.strength),
            "interaction_entries": len(snapshot.interaction),
            "prediction_mean": float(np.mean(y_pred)) if len(y_pred) else 0.0,
            "score_mse": mean_squared_error(y_true, y_pred),
            "gradient_rows": len(grads),
            "train_mse": float(np.mean(losses)) if len(losses) else 0.0,
        }
    )


if __name__ == "__main__":
    main()
