from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from numbers import Integral
from typing import Any, Iterable, Sequence, Tuple

import numpy as np
import torch

from fmkernel.errors import DataIntegrityError
from fmkernel.frame import lookup


@dataclass(frozen=True)
class ParameterTable:
    """Parameters keyed by feature id; ``keys`` is sorted and unique."""

    keys: torch.Tensor
    values: torch.Tensor

    def __len__(self) -> int:
        return int(self.keys.numel())

    def gather(self, feature_ids: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        positions, found = lookup(feature_ids, self.keys)
        if len(self) == 0:
            shape = (feature_ids.numel(),) + tuple(self.values.shape[1:])
            return torch.zeros(shape, dtype=self.values.dtype), found
        return self.values[positions], found


@dataclass(frozen=True)
class ModelSnapshot:
    k: int
    bias: float
    strength: ParameterTable
    interaction: ParameterTable

    @classmethod
    def from_tables(
        cls,
        k: int,
        bias: float,
        strengths: Mapping | Iterable[Tuple[int, float]],
        interactions: Mapping | Iterable[Tuple[int, Sequence[float]]],
    ) -> "ModelSnapshot":
        if isinstance(k, bool) or not isinstance(k, Integral) or k < 0:
            raise DataIntegrityError(f"factorization dimension must be a non-negative integer, got {k!r}")
        if not math.isfinite(float(bias)):
            raise DataIntegrityError(f"bias must be finite, got {bias}")

        strength_ids, weights = _unzip(strengths, "strength")
        strength = _build_table(strength_ids, np.asarray(weights, dtype=np.float64).reshape(-1), "strength")

        interaction_ids, vectors = _unzip(interactions, "interaction")
        rows = []
        for fid, vec in zip(interaction_ids, vectors):
            arr = np.asarray(vec, dtype=np.float64).reshape(-1)
            if arr.shape[0] != k:
                raise DataIntegrityError(f"interaction vector of feature {fid} has length {arr.shape[0]}, expected k={k}")
            rows.append(arr)
        matrix = np.stack(rows) if rows else np.zeros((0, k), dtype=np.float64)
        interaction = _build_table(interaction_ids, matrix, "interaction")
        return cls(k=int(k), bias=float(bias), strength=strength, interaction=interaction)


def _unzip(entries: Any, name: str) -> Tuple[list, list]:
    pairs = list(entries.items()) if isinstance(entries, Mapping) else [tuple(e) for e in entries]
    ids = []
    for fid, _ in pairs:
        if isinstance(fid, bool) or not isinstance(fid, Integral) or fid < 0:
            raise DataIntegrityError(f"{name} table has invalid feature id {fid!r}")
        ids.append(int(fid))
    return ids, [value for _, value in pairs]


def _build_table(ids: list, values: np.ndarray, name: str) -> ParameterTable:
    keys = np.asarray(ids, dtype=np.int64)
    if np.unique(keys).shape[0] != keys.shape[0]:
        raise DataIntegrityError(f"{name} table has duplicate feature ids")
    if not np.all(np.isfinite(values)):
        raise DataIntegrityError(f"{name} table has non-finite values")
    order = np.argsort(keys, kind="stable")
    return ParameterTable(keys=torch.from_numpy(keys[order]), values=torch.from_numpy(values[order]))
