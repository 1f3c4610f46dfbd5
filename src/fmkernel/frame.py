"""Columnar row collection standing in for the distributed engine.

A ``Frame`` is a set of equally long tensors keyed by column name. The kernel
only relies on the functional contracts below: key lookup against a sorted
table, associative group-by-key sums, and windowed sums broadcast back onto
rows. Partitioning splits rows into contiguous chunks whose partial sums are
merged, so results do not depend on how rows are distributed.
"""
from __future__ import annotations

from typing import Dict, Iterator, List, Tuple

import torch
from tqdm import tqdm


class Frame:
    def __init__(self, columns: Dict[str, torch.Tensor]) -> None:
        lengths = {name: int(col.shape[0]) for name, col in columns.items()}
        if len(set(lengths.values())) > 1:
            raise ValueError(f"Column lengths differ: {lengths}")
        self._columns = dict(columns)
        self._length = next(iter(lengths.values()), 0)

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, name: str) -> torch.Tensor:
        return self._columns[name]

    def __contains__(self, name: str) -> bool:
        return name in self._columns

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    def with_columns(self, **columns: torch.Tensor) -> "Frame":
        return Frame({**self._columns, **columns})

    def select(self, *names: str) -> "Frame":
        return Frame({name: self._columns[name] for name in names})

    def take(self, index: torch.Tensor) -> "Frame":
        return Frame({name: col[index] for name, col in self._columns.items()})

    def filter(self, mask: torch.Tensor) -> "Frame":
        return self.take(torch.nonzero(mask, as_tuple=True)[0])

    def partitions(self, num_partitions: int) -> List["Frame"]:
        chunks = torch.tensor_split(torch.arange(self._length), num_partitions)
        return [self.take(idx) for idx in chunks]


def lookup(keys: torch.Tensor, table_keys: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """Return ``(positions, found)`` of ``keys`` inside sorted unique ``table_keys``."""
    if table_keys.numel() == 0:
        return torch.zeros_like(keys), torch.zeros(keys.shape, dtype=torch.bool)
    positions = torch.searchsorted(table_keys, keys).clamp(max=table_keys.numel() - 1)
    found = table_keys[positions] == keys
    return positions, found


def group_sum(
    frame: Frame,
    key: str,
    column: str,
    num_groups: int,
    num_partitions: int = 1,
    progress: bool = False,
) -> torch.Tensor:
    values = frame[column]
    out = torch.zeros((num_groups,) + tuple(values.shape[1:]), dtype=values.dtype)
    parts = frame.partitions(num_partitions)
    for part in tqdm(parts, desc=f"sum({column})", disable=not progress, leave=False):
        partial = torch.zeros_like(out)
        if len(part) and partial.numel():
            partial.index_add_(0, part[key], part[column])
        out = out + partial
    return out


def window_sum(
    frame: Frame,
    key: str,
    column: str,
    num_groups: int,
    num_partitions: int = 1,
    progress: bool = False,
) -> torch.Tensor:
    sums = group_sum(frame, key, column, num_groups, num_partitions=num_partitions, progress=progress)
    return sums[frame[key]]
