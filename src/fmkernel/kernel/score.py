from __future__ import annotations

import torch

from fmkernel.config import KernelConfig
from fmkernel.data.samples import SampleBatch
from fmkernel.frame import Frame
from fmkernel.kernel.aggregate import aggregate, contribution_terms
from fmkernel.kernel.explode import explode
from fmkernel.kernel.join import JoinPolicy, join_parameters
from fmkernel.models.snapshot import ModelSnapshot


def interaction_term(vfxi_sum: torch.Tensor, vi2xi2_sum: torch.Tensor) -> torch.Tensor:
    return 0.5 * (torch.sum(vfxi_sum * vfxi_sum, dim=-1) - vi2xi2_sum)


def raw_score(bias: float, wixi_sum: torch.Tensor, vfxi_sum: torch.Tensor, vi2xi2_sum: torch.Tensor) -> torch.Tensor:
    return bias + wixi_sum + interaction_term(vfxi_sum, vi2xi2_sum)


def clamp(raw: torch.Tensor, min_label: float, max_label: float) -> torch.Tensor:
    # NaN from overflow (inf - inf) clamps to max_label
    return torch.clamp(torch.nan_to_num(raw, nan=max_label), min=min_label, max=max_label)


def score(batch: SampleBatch, snapshot: ModelSnapshot, config: KernelConfig) -> Frame:
    """Score every sample of an id-assigned batch.

    Features missing from either table are dropped; a sample left with no rows
    scores as the clamped bias. Returns ``sample_id`` and ``prediction`` columns,
    one row per sample in batch order.
    """
    rows = explode(batch)
    joined = join_parameters(rows, snapshot, JoinPolicy.INNER, progress=config.progress)
    sums = aggregate(
        contribution_terms(joined), len(batch), num_partitions=config.num_partitions, progress=config.progress
    )
    bias = snapshot.bias
    raw = raw_score(bias, sums.wixi_sum, sums.vfxi_sum, sums.vi2xi2_sum)
    raw = torch.where(sums.row_count > 0, raw, torch.full_like(raw, bias))
    return Frame({"sample_id": batch.sample_ids, "prediction": clamp(raw, config.min_label, config.max_label)})
