from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, Optional

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fmkernel.config import KernelConfig, load_config  # noqa: E402


def load_kernel_config(config_path: Optional[str], overrides: Optional[Dict] = None) -> KernelConfig:
    path = config_path if config_path and Path(config_path).exists() else None
    return load_config(path, overrides)


def print_json(payload: Dict) -> None:
    print(json.dumps(payload, indent=2))
