from __future__ import annotations

import numpy as np

from fmkernel.kernel.gradient import GradientRows


def sample_losses(grads: GradientRows) -> np.ndarray:
    """One squared error per sample, in order of first appearance."""
    sample_ids = grads.sample_id.cpu().numpy()
    losses = grads.loss.cpu().numpy()
    _, first = np.unique(sample_ids, return_index=True)
    return losses[np.sort(first)]


def mean_squared_error(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    if y_true.shape[0] == 0:
        return 0.0
    return float(np.mean((y_pred - y_true) ** 2))


def rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))
