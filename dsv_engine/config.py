"""
Configuration for the distributed state-vector engine.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Optional

from dsv_engine.errors import ConfigurationError


@dataclass(frozen=True)
class EngineConfig:
    """Tolerances and runtime knobs shared by every worker of a team."""

    # Numerical tolerances
    unitarity_tol: float = 1e-8  # max |U^dagger U - I| entry
    kraus_tol: float = 1e-8  # max |sum K^dagger K - I| entry
    probability_tol: float = 1e-6  # channel branch probabilities must sum to 1 +- this
    norm_tol: float = 1e-8  # check_norm() drift tolerance

    # Local kernel: "scalar" (two-pass numpy) or "batched" (single GEMM)
    kernel: str = "scalar"

    # Exchange protocol
    exchange_chunk: int = 1 << 20  # max amplitudes per message piece
    verify_shared_draws: bool = False  # allgather state-shared draws and compare
    comm_timeout: Optional[float] = None  # seconds; None blocks indefinitely

    # Random streams
    seed: int = 0

    def __post_init__(self):
        if self.kernel not in ("scalar", "batched"):
            raise ConfigurationError(f"unknown kernel {self.kernel!r}")
        if self.exchange_chunk < 1:
            raise ConfigurationError("exchange_chunk must be >= 1")

    def with_overrides(self, **kwargs) -> "EngineConfig":
        return replace(self, **kwargs)

    @classmethod
    def from_env(cls, prefix: str = "DSV_") -> "EngineConfig":
        """Build a config from ``DSV_<FIELD>`` environment variables."""
        kwargs = {}
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            try:
                kwargs[f.name] = _parse_env(f.name, raw)
            except ValueError as e:
                raise ConfigurationError(f"{prefix}{f.name.upper()}={raw!r}: {e}") from e
        return cls(**kwargs)


def _parse_env(name: str, raw: str):
    if name == "kernel":
        return raw
    if name == "verify_shared_draws":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if name in ("exchange_chunk", "seed"):
        return int(raw)
    if name == "comm_timeout":
        return None if raw.strip().lower() in ("", "none") else float(raw)
    return float(raw)


# Default configuration instance
DEFAULT_CONFIG = EngineConfig()
