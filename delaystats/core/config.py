from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Tuple
import os


def detect_available_memory() -> int:
    try:
        import psutil  # local import to keep module import light
        total_bytes = psutil.virtual_memory().total
        return max(100, min(4096, int(total_bytes / (1024 * 1024 * 4))))
    except Exception:
        return 512


def detect_cpu_cores() -> int:
    try:
        return max(1, int(os.cpu_count() or 1))
    except Exception:
        return 1


@dataclass
class ApplicationConfig:
    """Centralized configuration"""

    # Memory settings
    max_memory_mb: int = field(default_factory=lambda: detect_available_memory())

    # Curve construction
    min_samples: int = 20  # confidence floor for specific curves and buckets
    default_min_samples: int = 10
    max_curve_points: int = 64
    curve_tolerance: float = 0.001
    max_abs_delay_seconds: int = 10 * 60 * 60
    delay_rounding_seconds: int = 0
    timezone: str = "Europe/Berlin"

    # Processing settings
    max_workers: int = field(default_factory=lambda: detect_cpu_cores())

    # Persistence
    data_dir: Path = Path("./data/curve_data")
    serde_format: str = "pickle"
    leaf_set: Tuple[str, ...] = ("CurveSet",)
    strict_loading: bool = False
    schedule_path: Path = Path("./data/schedule.json")

    # Web front end
    web_host: str = "0.0.0.0"
    web_port: int = 59966

    @classmethod
    def from_env(cls, prefix: str = "DELAYSTATS_") -> "ApplicationConfig":
        """Build a config, overriding fields from environment variables"""
        config = cls()
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            current = getattr(config, f.name)
            if isinstance(current, bool):
                value = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            elif isinstance(current, Path):
                value = Path(raw)
            elif isinstance(current, tuple):
                value = tuple(part.strip() for part in raw.split(",") if part.strip())
            else:
                value = raw
            setattr(config, f.name, value)
        return config
