from .snapshot import ModelSnapshot, ParameterTable
from .fm import FactorizationMachinesModel

__all__ = ["FactorizationMachinesModel", "ModelSnapshot", "ParameterTable"]
