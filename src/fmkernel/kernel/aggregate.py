"""Per-sample sums for the closed-form FM interaction.

With per-row terms ``wixi = w*x``, ``vfxi = v*x`` and ``vi2xi2 = |v|^2 * x^2``,
the pairwise interaction of a sample is
``0.5 * (sum_f (sum_i vfxi[f])^2 - sum_i vi2xi2)``, so three segment sums per
sample are enough. Sums are accumulated per partition and then merged.
"""
from __future__ import annotations

from dataclasses import dataclass

import torch

from fmkernel.frame import Frame, group_sum, window_sum

SUM_COLUMNS = (("wixi", "wixi_sum"), ("vfxi", "vfxi_sum"), ("vi2xi2", "vi2xi2_sum"))


@dataclass(frozen=True)
class SampleSums:
    wixi_sum: torch.Tensor
    vfxi_sum: torch.Tensor
    vi2xi2_sum: torch.Tensor
    row_count: torch.Tensor


def contribution_terms(joined: Frame) -> Frame:
    x = joined["value"]
    vec = joined["vec"]
    return joined.with_columns(
        wixi=joined["weight"] * x,
        vfxi=vec * x.unsqueeze(1),
        vi2xi2=torch.sum(vec * vec, dim=1) * x * x,
        one=torch.ones(len(joined), dtype=torch.int64),
    )


def aggregate(terms: Frame, num_samples: int, num_partitions: int = 1, progress: bool = False) -> SampleSums:
    sums = {
        out: group_sum(terms, "sample_index", col, num_samples, num_partitions=num_partitions, progress=progress)
        for col, out in SUM_COLUMNS
    }
    row_count = group_sum(terms, "sample_index", "one", num_samples, num_partitions=num_partitions, progress=progress)
    return SampleSums(row_count=row_count, **sums)


def window_aggregate(terms: Frame, num_samples: int, num_partitions: int = 1, progress: bool = False) -> Frame:
    """Per-sample sums broadcast back onto every row of the sample."""
    return Frame(
        {
            out: window_sum(terms, "sample_index", col, num_samples, num_partitions=num_partitions, progress=progress)
            for col, out in SUM_COLUMNS
        }
    )
