from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

import torch
from tqdm import tqdm

from fmkernel.config import KernelConfig
from fmkernel.data.samples import Record, SampleBatch, assign_sample_ids
from fmkernel.errors import SchemaError
from fmkernel.kernel.gradient import GradientRows, loss_gradients
from fmkernel.kernel.join import require_positive_sd
from fmkernel.kernel.score import score

from .snapshot import ModelSnapshot


class FactorizationMachinesModel:
    """Scores records and computes loss gradients against one model snapshot.

    The snapshot is shared read-only; ``copy`` returns a model with a different
    config over the same snapshot.
    """

    def __init__(self, snapshot: ModelSnapshot, config: Optional[KernelConfig] = None) -> None:
        self.snapshot = snapshot
        self.config = config or KernelConfig()

    @property
    def k(self) -> int:
        return self.snapshot.k

    @property
    def bias(self) -> float:
        return self.snapshot.bias

    def copy(self, **overrides: Any) -> "FactorizationMachinesModel":
        return FactorizationMachinesModel(self.snapshot, self.config.replace(**overrides))

    def with_label_range(self, min_label: float, max_label: float) -> "FactorizationMachinesModel":
        return self.copy(min_label=min_label, max_label=max_label)

    def transform_schema(self, columns: Sequence[str]) -> List[str]:
        columns = list(columns)
        if self.config.features_col not in columns:
            raise SchemaError(f"missing features column '{self.config.features_col}'")
        if self.config.prediction_col in columns:
            raise SchemaError(f"output column '{self.config.prediction_col}' already exists")
        return columns + [self.config.prediction_col]

    def predict(self, batch: SampleBatch) -> torch.Tensor:
        indexed = assign_sample_ids(batch)
        return score(indexed, self.snapshot, self.config)["prediction"]

    def transform(self, records: Iterable[Record]) -> List[Record]:
        """Copies of ``records`` with the clamped prediction column added."""
        cfg = self.config
        batch = SampleBatch.from_records(records, cfg)
        # the join path and the re-attachment below must see the same ids
        indexed = assign_sample_ids(batch)
        predicted = score(indexed, self.snapshot, cfg)
        by_id: Dict[int, float] = dict(zip(predicted["sample_id"].tolist(), predicted["prediction"].tolist()))

        out: List[Record] = []
        for record, sample_id in zip(indexed.records, indexed.sample_ids.tolist()):
            row = dict(record)
            row[cfg.prediction_col] = by_id[sample_id]
            out.append(row)
        if cfg.progress:
            tqdm.write(f"[transform] samples={len(out)} k={self.k} bias={self.bias:.6f}")
        return out

    def calc_loss_grad(
        self,
        records: Iterable[Record] | SampleBatch,
        initial_sd: float,
        generator: Optional[torch.Generator] = None,
    ) -> GradientRows:
        require_positive_sd(initial_sd)
        cfg = self.config
        batch = records if isinstance(records, SampleBatch) else SampleBatch.from_records(records, cfg, require_label=True)
        if generator is None and cfg.seed is not None:
            generator = torch.Generator()
            generator.manual_seed(int(cfg.seed))
        grads = loss_gradients(assign_sample_ids(batch), self.snapshot, cfg, initial_sd, generator=generator)
        if cfg.progress:
            tqdm.write(f"[loss_grad] samples={len(batch)} rows={len(grads)} initial_sd={initial_sd}")
        return grads
