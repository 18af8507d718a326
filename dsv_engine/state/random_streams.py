"""Random streams with explicit lifetimes.

  local  - independent on every worker (seeded with the pool rank).
  state  - identical on every worker of one team; measurement outcomes and
           channel branches are drawn from it so all slices agree on what
           happened.
  pool   - identical on every worker of the pool; the only state shared
           across teams.

Each stream carries its seed and draw count.  Generators are numpy PCG64,
whose output for a given seed is the same on every platform, so workers
that issue the same draws in the same order get bit-identical values.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from dsv_engine.errors import PreconditionViolation

KINDS = ("local", "state", "pool")
_KIND_CODE = {"local": 0, "state": 1, "pool": 2}


class RandomStream:
    """One seeded generator plus its draw counter."""

    def __init__(self, kind: str, seed: int, scope: tuple[int, ...] = ()):
        if kind not in _KIND_CODE:
            raise PreconditionViolation(f"unknown stream kind {kind!r}")
        self.kind = kind
        self.scope = tuple(scope)
        self.reseed(seed)

    def reseed(self, seed: int) -> None:
        """Takes effect on the next draw."""
        self.seed = int(seed)
        self.draws = 0
        self._rng = np.random.default_rng([self.seed, _KIND_CODE[self.kind], *self.scope])

    def draw(self) -> float:
        """Uniform value in [0, 1)."""
        self.draws += 1
        return float(self._rng.random())

    @property
    def generator(self) -> np.random.Generator:
        """Underlying generator for bulk draws (e.g. random initial states)."""
        return self._rng

    def __repr__(self) -> str:
        return f"RandomStream({self.kind}, seed={self.seed}, draws={self.draws})"


@dataclass
class RandomStreams:
    local: RandomStream
    state: RandomStream
    pool: RandomStream

    @classmethod
    def for_worker(cls, seed: int, team_id: int = 0,
                   pool_rank: int = 0) -> "RandomStreams":
        return cls(
            local=RandomStream("local", seed, scope=(pool_rank,)),
            state=RandomStream("state", seed, scope=(team_id,)),
            pool=RandomStream("pool", seed),
        )

    def get(self, kind: str) -> RandomStream:
        if kind not in KINDS:
            raise PreconditionViolation(f"unknown stream kind {kind!r}")
        return getattr(self, kind)

    def reseed(self, kind: str, seed: int) -> None:
        self.get(kind).reseed(seed)
