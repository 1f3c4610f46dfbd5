from .config import KernelConfig, load_config
from .data import SampleBatch, assign_sample_ids
from .errors import DataIntegrityError, SchemaError
from .models import FactorizationMachinesModel, ModelSnapshot

__all__ = [
    "KernelConfig",
    "load_config",
    "SampleBatch",
    "assign_sample_ids",
    "SchemaError",
    "DataIntegrityError",
    "FactorizationMachinesModel",
    "ModelSnapshot",
]
