from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import torch

from fmkernel.config import KernelConfig
from fmkernel.data.samples import SampleBatch
from fmkernel.errors import SchemaError
from fmkernel.kernel.aggregate import contribution_terms, window_aggregate
from fmkernel.kernel.explode import explode
from fmkernel.kernel.join import JoinPolicy, join_parameters, require_positive_sd
from fmkernel.kernel.score import clamp, raw_score
from fmkernel.models.snapshot import ModelSnapshot


@dataclass(frozen=True)
class GradientRows:
    """One row per (sample, active feature); ``loss`` repeats the sample's squared error."""

    sample_id: torch.Tensor
    feature_id: torch.Tensor
    label: torch.Tensor
    prediction: torch.Tensor
    loss: torch.Tensor
    delta_wi: torch.Tensor
    delta_vi: torch.Tensor

    def __len__(self) -> int:
        return int(self.sample_id.numel())

    def to_records(self, config: KernelConfig) -> List[Dict[str, Any]]:
        return [
            {
                config.label_col: label,
                config.sample_id_col: sample_id,
                "featureId": feature_id,
                config.prediction_col: prediction,
                "loss": loss,
                "deltaWi": delta_wi,
                "deltaVi": delta_vi,
            }
            for label, sample_id, feature_id, prediction, loss, delta_wi, delta_vi in zip(
                self.label.tolist(),
                self.sample_id.tolist(),
                self.feature_id.tolist(),
                self.prediction.tolist(),
                self.loss.tolist(),
                self.delta_wi.tolist(),
                self.delta_vi.tolist(),
            )
        ]


def loss_gradients(
    batch: SampleBatch,
    snapshot: ModelSnapshot,
    config: KernelConfig,
    initial_sd: float,
    generator: Optional[torch.Generator] = None,
) -> GradientRows:
    """Gradient signals of the clamped prediction for every active feature.

    ``deltaWi = x`` and ``deltaVi = x * vfxiSum - v * x^2``. Features missing
    from the tables are initialised from N(0, initial_sd) for this pass only.
    Nothing in ``snapshot`` is modified.
    """
    sd = require_positive_sd(initial_sd)
    if batch.labels is None:
        raise SchemaError(f"training requires the label column '{config.label_col}'")

    rows = explode(batch)
    joined = join_parameters(
        rows,
        snapshot,
        JoinPolicy.OUTER,
        initial_sd=sd,
        generator=generator,
        init_scope=config.init_scope,
        progress=config.progress,
    )
    terms = contribution_terms(joined)
    window = window_aggregate(terms, len(batch), num_partitions=config.num_partitions, progress=config.progress)

    x = terms["value"]
    vfxi_sum = window["vfxi_sum"]
    delta_vi = vfxi_sum * x.unsqueeze(1) - terms["vfxi"] * x.unsqueeze(1)
    raw = raw_score(snapshot.bias, window["wixi_sum"], vfxi_sum, window["vi2xi2_sum"])
    prediction = clamp(raw, config.min_label, config.max_label)
    loss = torch.pow(prediction - terms["label"], 2.0)
    return GradientRows(
        sample_id=terms["sample_id"],
        feature_id=terms["feature_id"],
        label=terms["label"],
        prediction=prediction,
        loss=loss,
        delta_wi=x.clone(),
        delta_vi=delta_vi,
    )
