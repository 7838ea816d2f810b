"""
API configuration.

Settings are read from the environment (and the project's .env file, loaded
with python-dotenv) once per process.

Environment variables:
- RATE_LIMIT_BACKEND: "memory" (default, single process) or "supabase"
- RATE_LIMIT_SWEEP_SECONDS: how often the in-memory limiter evicts expired windows
- CORS_ORIGINS: comma-separated list of allowed origins, "*" by default
- LOG_LEVEL: root log level, INFO by default

Supabase credentials (SUPABASE_URL / SUPABASE_KEY) are read by
`repositories.client`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

RATE_LIMIT_BACKENDS = ("memory", "supabase")


@dataclass(frozen=True, slots=True)
class Settings:
    rate_limit_backend: str = "memory"
    rate_limit_sweep_seconds: float = 300.0
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.rate_limit_backend not in RATE_LIMIT_BACKENDS:
            raise ValueError(
                f"RATE_LIMIT_BACKEND must be one of {', '.join(RATE_LIMIT_BACKENDS)}, "
                f"got {self.rate_limit_backend!r}"
            )
        if self.rate_limit_sweep_seconds <= 0:
            raise ValueError("RATE_LIMIT_SWEEP_SECONDS must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            rate_limit_backend=os.getenv("RATE_LIMIT_BACKEND", "memory").strip().lower(),
            rate_limit_sweep_seconds=float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "300")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()) or ("*",),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = ["Settings", "get_settings"]
