"""Message-passing substrate seen by the engine.

The engine only needs a handful of primitives: a blocking pairwise
exchange of one numpy array with a known partner, a few collectives, and
a collective split into sub-communicators.  Every call is collective over
the communicator (or over the rank/partner pair for ``sendrecv``) and
must be issued in the same order on every participating rank.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import numpy as np


class Communicator(ABC):
    """Ranks 0 .. size-1 running the same program in lockstep."""

    @property
    @abstractmethod
    def rank(self) -> int: ...

    @property
    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def sendrecv(self, data: np.ndarray, partner: int) -> np.ndarray:
        """Send ``data`` to ``partner`` and return what it sent us.

        Both sides must call with each other as partner and arrays of the
        same shape and dtype.  The returned array is owned by the caller.
        """

    @abstractmethod
    def allgather(self, obj: Any) -> list:
        """Return ``[obj_from_rank_0, ..., obj_from_rank_{size-1}]``."""

    @abstractmethod
    def bcast(self, obj: Any, root: int = 0) -> Any: ...

    @abstractmethod
    def barrier(self) -> None: ...

    @abstractmethod
    def split(self, color: int, key: int = 0) -> "Communicator":
        """Collective split: ranks sharing ``color`` form a new communicator,
        ordered by ``(key, rank)``."""

    def allreduce_sum(self, value):
        """Sum a scalar over all ranks.

        Contributions are added in rank order so every rank gets a
        bit-identical result.
        """
        parts = self.allgather(value)
        total = parts[0]
        for p in parts[1:]:
            total = total + p
        return total

    # ── helpers ──────────────────────────────────────────────────────

    @property
    def is_root(self) -> bool:
        return self.rank == 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rank={self.rank}, size={self.size})"
