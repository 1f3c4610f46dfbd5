from __future__ import annotations

import math
from collections.abc import Mapping
from numbers import Integral, Real
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import torch
from torch.utils.data import Dataset

from fmkernel.config import KernelConfig
from fmkernel.errors import SchemaError

Record = Dict[str, Any]

INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1


class SampleBatch(Dataset):
    """Sparse samples held in CSR form: ``indptr`` delimits each sample's entries."""

    def __init__(
        self,
        indptr: torch.Tensor,
        feature_ids: torch.Tensor,
        values: torch.Tensor,
        sample_ids: Optional[torch.Tensor] = None,
        labels: Optional[torch.Tensor] = None,
        records: Optional[Sequence[Record]] = None,
    ) -> None:
        self.indptr = indptr.to(torch.int64)
        self.feature_ids = feature_ids.to(torch.int64)
        self.values = values.to(torch.float64)
        self.sample_ids = None if sample_ids is None else sample_ids.to(torch.int64)
        self.labels = None if labels is None else labels.to(torch.float64)
        self.records = records
        if self.indptr.ndim != 1 or self.indptr.numel() == 0 or int(self.indptr[-1]) != self.feature_ids.numel():
            raise SchemaError("indptr does not delimit the feature entries")
        if int(self.indptr[0]) != 0 or bool(torch.any(self.indptr[1:] < self.indptr[:-1])):
            raise SchemaError("indptr must start at 0 and be non-decreasing")
        if self.feature_ids.shape != self.values.shape:
            raise SchemaError("feature_ids and values must have the same length")
        if self.sample_ids is not None and self.sample_ids.numel() != len(self):
            raise SchemaError("sample_ids must have one entry per sample")
        if self.labels is not None and self.labels.numel() != len(self):
            raise SchemaError("labels must have one entry per sample")

    def __len__(self) -> int:
        return self.indptr.shape[0] - 1

    def __getitem__(self, idx: int) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        start, end = int(self.indptr[idx]), int(self.indptr[idx + 1])
        label = self.labels[idx] if self.labels is not None else torch.tensor(float("nan"), dtype=torch.float64)
        return self.feature_ids[start:end], self.values[start:end], label

    @property
    def has_sample_ids(self) -> bool:
        return self.sample_ids is not None

    def row_sample_index(self) -> torch.Tensor:
        counts = self.indptr[1:] - self.indptr[:-1]
        return torch.repeat_interleave(torch.arange(len(self), dtype=torch.int64), counts)

    @classmethod
    def from_arrays(
        cls,
        indptr: Sequence[int] | np.ndarray,
        feature_ids: Sequence[int] | np.ndarray,
        values: Sequence[float] | np.ndarray,
        sample_ids: Sequence[int] | np.ndarray | None = None,
        labels: Sequence[float] | np.ndarray | None = None,
    ) -> "SampleBatch":
        feature_ids_t = torch.as_tensor(np.asarray(feature_ids, dtype=np.int64))
        if feature_ids_t.numel() and int(feature_ids_t.min()) < 0:
            raise SchemaError("feature ids must be non-negative")
        values_np = np.asarray(values, dtype=np.float64)
        if not np.all(np.isfinite(values_np)):
            raise SchemaError("feature values must be finite")
        labels_np = None if labels is None else np.asarray(labels, dtype=np.float64)
        if labels_np is not None and not np.all(np.isfinite(labels_np)):
            raise SchemaError("labels must be finite")
        ids_t = None if sample_ids is None else torch.as_tensor(np.asarray(sample_ids, dtype=np.int64))
        if ids_t is not None:
            _check_unique(ids_t)
        batch = cls(
            indptr=torch.as_tensor(np.asarray(indptr, dtype=np.int64)),
            feature_ids=feature_ids_t,
            values=torch.as_tensor(values_np),
            sample_ids=ids_t,
            labels=None if labels_np is None else torch.as_tensor(labels_np),
        )
        rows = batch.row_sample_index().numpy()
        fids = batch.feature_ids.numpy()
        order = np.lexsort((fids, rows))
        repeated = (rows[order][1:] == rows[order][:-1]) & (fids[order][1:] == fids[order][:-1])
        if np.any(repeated):
            first = order[1:][repeated][0]
            raise SchemaError(f"sample {int(rows[first])}: feature id {int(fids[first])} appears more than once")
        return batch

    @classmethod
    def from_records(
        cls,
        records: Iterable[Record],
        config: KernelConfig,
        require_label: bool = False,
    ) -> "SampleBatch":
        records = list(records)
        indptr: List[int] = [0]
        feature_ids: List[int] = []
        values: List[float] = []
        for row, record in enumerate(records):
            features = record.get(config.features_col) if isinstance(record, Mapping) else None
            if not isinstance(features, Mapping):
                raise SchemaError(
                    f"record {row}: column '{config.features_col}' must be a mapping of feature id to value"
                )
            for fid, value in features.items():
                feature_ids.append(_feature_id(fid, row))
                values.append(_number(value, f"record {row}: feature {fid} value"))
            indptr.append(len(feature_ids))

        id_col = config.sample_id_col
        with_ids = [id_col in r for r in records]
        sample_ids = None
        if records and all(with_ids):
            sample_ids = torch.tensor([_sample_id(r[id_col], i) for i, r in enumerate(records)], dtype=torch.int64)
            _check_unique(sample_ids)
        elif any(with_ids):
            raise SchemaError(f"column '{id_col}' is present on some records but not all")

        label_col = config.label_col
        with_labels = [label_col in r for r in records]
        labels = None
        if all(with_labels):
            labels = torch.tensor(
                [_number(r[label_col], f"record {i}: label") for i, r in enumerate(records)], dtype=torch.float64
            )
        elif require_label:
            missing = with_labels.index(False)
            raise SchemaError(f"record {missing}: missing label column '{label_col}'")

        return cls(
            indptr=torch.tensor(indptr, dtype=torch.int64),
            feature_ids=torch.tensor(feature_ids, dtype=torch.int64),
            values=torch.tensor(values, dtype=torch.float64),
            sample_ids=sample_ids,
            labels=labels,
            records=records,
        )


def assign_sample_ids(batch: SampleBatch, offset: int = 0) -> SampleBatch:
    """Give every sample an id unique within the batch, exactly once.

    Batches that already carry ids are returned unchanged. The caller must hand
    the returned batch to every consumer of the pass.
    """
    if batch.has_sample_ids:
        return batch
    ids = torch.arange(offset, offset + len(batch), dtype=torch.int64)
    return SampleBatch(batch.indptr, batch.feature_ids, batch.values, ids, batch.labels, batch.records)


def _check_unique(sample_ids: torch.Tensor) -> None:
    if torch.unique(sample_ids).numel() != sample_ids.numel():
        raise SchemaError("sample ids must be unique within a batch")


def _feature_id(fid: Any, row: int) -> int:
    if isinstance(fid, bool) or not isinstance(fid, Integral):
        raise SchemaError(f"record {row}: feature id {fid!r} is not an integer")
    if fid < 0:
        raise SchemaError(f"record {row}: feature id {fid} is negative")
    if fid > INT64_MAX:
        raise SchemaError(f"record {row}: feature id {fid} does not fit in 64 bits")
    return int(fid)


def _sample_id(value: Any, row: int) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise SchemaError(f"record {row}: sample id {value!r} is not an integer")
    if not INT64_MIN <= value <= INT64_MAX:
        raise SchemaError(f"record {row}: sample id {value} does not fit in 64 bits")
    return int(value)


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
        raise SchemaError(f"{what} must be a finite number, got {value!r}")
    return float(value)
