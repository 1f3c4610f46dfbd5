from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

import torch
from tqdm import tqdm

from fmkernel.config import INIT_SCOPES
from fmkernel.frame import Frame
from fmkernel.models.snapshot import ModelSnapshot


class JoinPolicy(str, Enum):
    INNER = "inner"
    OUTER = "outer"


def require_positive_sd(initial_sd: Optional[float]) -> float:
    if initial_sd is None or not float(initial_sd) > 0.0:
        raise ValueError(f"initial_sd (initial standard deviation) must be > 0.0, got {initial_sd}")
    return float(initial_sd)


def join_parameters(
    rows: Frame,
    snapshot: ModelSnapshot,
    policy: JoinPolicy | str,
    initial_sd: Optional[float] = None,
    generator: Optional[torch.Generator] = None,
    init_scope: str = "occurrence",
    progress: bool = False,
) -> Frame:
    """Attach ``weight`` and ``vec`` columns to exploded rows.

    INNER drops rows whose feature id is missing from either table. OUTER keeps
    every row and fills the gaps with fresh N(0, initial_sd) draws; the draws
    are never written back to the snapshot. With ``init_scope="occurrence"``
    each missing row gets its own draw, with ``"feature"`` all rows of the same
    missing feature id share one draw.
    """
    policy = JoinPolicy(policy)
    feature_ids = rows["feature_id"]
    weights, has_weight = snapshot.strength.gather(feature_ids)
    vectors, has_vec = snapshot.interaction.gather(feature_ids)

    if policy is JoinPolicy.INNER:
        keep = has_weight & has_vec
        joined = rows.filter(keep).with_columns(weight=weights[keep], vec=vectors[keep])
    else:
        sd = require_positive_sd(initial_sd)
        if init_scope not in INIT_SCOPES:
            raise ValueError(f"Unsupported init_scope: {init_scope}")
        fresh_w = _initialize(feature_ids, ~has_weight, (), sd, generator, init_scope)
        fresh_v = _initialize(feature_ids, ~has_vec, (snapshot.k,), sd, generator, init_scope)
        joined = rows.with_columns(
            weight=torch.where(has_weight, weights, fresh_w),
            vec=torch.where(has_vec.unsqueeze(1), vectors, fresh_v),
        )

    if progress:
        tqdm.write(
            f"[join:{policy.value}] rows={len(rows)} kept={len(joined)} "
            f"missing_strength={int((~has_weight).sum())} missing_interaction={int((~has_vec).sum())}"
        )
    return joined


def _initialize(
    feature_ids: torch.Tensor,
    missing: torch.Tensor,
    tail: Tuple[int, ...],
    initial_sd: float,
    generator: Optional[torch.Generator],
    init_scope: str,
) -> torch.Tensor:
    out = torch.zeros((feature_ids.numel(),) + tail, dtype=torch.float64)
    idx = torch.nonzero(missing, as_tuple=True)[0]
    if idx.numel() == 0:
        return out
    if init_scope == "feature":
        unique_ids, inverse = torch.unique(feature_ids[idx], return_inverse=True)
        draws = torch.randn((unique_ids.numel(),) + tail, generator=generator, dtype=torch.float64)
        out[idx] = draws[inverse] * initial_sd
    else:
        out[idx] = torch.randn((idx.numel(),) + tail, generator=generator, dtype=torch.float64) * initial_sd
    return out
