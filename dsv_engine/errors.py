"""Error taxonomy for the distributed engine.

  ConfigurationError    - invalid worker/qubit counts or team partition.
                          Raised at construction, never recovered.
  PreconditionViolation - bad call arguments.  Raised before any state
                          mutation or communication, so the caller may retry.
  ConsistencyError      - the simulated state can no longer be trusted
                          (broken permutation, diverging shared draws,
                          probabilities or norm out of tolerance).
  CommunicationFailure  - partner unreachable or the worker world aborted.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for all dsv_engine errors."""


class ConfigurationError(EngineError, ValueError):
    pass


class PreconditionViolation(EngineError, ValueError):
    pass


class ConsistencyError(EngineError):
    pass


class CommunicationFailure(EngineError):
    def __init__(self, reason: str, rank: int | None = None,
                 partner: int | None = None):
        self.reason = reason
        self.rank = rank
        self.partner = partner
        where = ""
        if rank is not None:
            where = f" (rank {rank}"
            where += f" <-> {partner})" if partner is not None else ")"
        super().__init__(f"{reason}{where}")
