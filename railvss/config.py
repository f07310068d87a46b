from __future__ import annotations
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Load .env early (no error if missing)
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    return int(raw) if raw else None


@dataclass(frozen=True)
class VSSConfig:
    # Default time discretization step in seconds
    dt: int = int(os.getenv("RAILVSS_DT", "15"))
    # Absolute tolerance of the uniform-acceleration check used for interpolation
    tolerance: float = float(os.getenv("RAILVSS_TOLERANCE", "1e-6"))
    # Prune VSS slots that no train uses when extracting a solution
    postprocess: bool = _env_flag("RAILVSS_POSTPROCESS")
    # Optional CBC time limit in seconds
    time_limit: int | None = _env_optional_int("RAILVSS_TIME_LIMIT")
    solver_msg: bool = _env_flag("RAILVSS_SOLVER_MSG")
