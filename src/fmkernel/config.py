from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from fmkernel.utils import merge_dict, read_yaml

INIT_SCOPES = ("occurrence", "feature")


@dataclass(frozen=True)
class KernelConfig:
    sample_id_col: str = "sampleId"
    features_col: str = "features"
    label_col: str = "label"
    prediction_col: str = "prediction"
    min_label: float = 0.0
    max_label: float = 1.0
    num_partitions: int = 1
    init_scope: str = "occurrence"
    seed: Optional[int] = None
    progress: bool = False

    def __post_init__(self) -> None:
        if self.min_label > self.max_label:
            raise ValueError(f"min_label ({self.min_label}) must be <= max_label ({self.max_label})")
        if self.num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {self.num_partitions}")
        if self.init_scope not in INIT_SCOPES:
            raise ValueError(f"Unsupported init_scope: {self.init_scope}")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "KernelConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **overrides: Any) -> "KernelConfig":
        return KernelConfig.from_dict(merge_dict(self.to_dict(), overrides))


def load_config(path: str | Path | None = None, overrides: Optional[Dict[str, Any]] = None) -> KernelConfig:
    base = read_yaml(path) if path is not None else {}
    return KernelConfig.from_dict(merge_dict(base, overrides or {}))
