"""Program-qubit ↔ data-position mapping.

A data position is a bit of the global amplitude index.  Positions below
k = log2(slice_size) are local to a worker; positions k .. n-1 select the
worker.  Renaming positions is free, moving amplitudes is not, so the
register keeps this bijection next to its amplitudes and only moves data
when a gate genuinely needs it.

Mutating methods check the bijection afterwards; a broken mapping raises
ConsistencyError.
"""
from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np

from dsv_engine.errors import ConsistencyError, PreconditionViolation


class Permutation:
    """Bidirectional program qubit <-> data position mapping."""

    __slots__ = ("n", "_q2p", "_p2q")

    def __init__(self, n: int):
        self.n = n
        self._q2p = list(range(n))
        self._p2q = list(range(n))

    @classmethod
    def from_list(cls, qubit_to_position: Sequence[int]) -> "Permutation":
        q2p = [int(p) for p in qubit_to_position]
        if sorted(q2p) != list(range(len(q2p))):
            raise PreconditionViolation(f"{q2p} is not a bijection")
        perm = cls(len(q2p))
        perm._q2p = q2p
        for q, p in enumerate(q2p):
            perm._p2q[p] = q
        perm.check()
        return perm

    # ── queries ──────────────────────────────────────────────────────

    def position_of(self, qubit: int) -> int:
        return self._q2p[qubit]

    def qubit_at(self, position: int) -> int:
        return self._p2q[position]

    def local_set(self, k: int) -> set[int]:
        """Program qubits currently at positions < k."""
        return {self._p2q[p] for p in range(min(k, self.n))}

    def to_list(self) -> list[int]:
        return list(self._q2p)

    def is_identity(self) -> bool:
        return all(self._q2p[i] == i for i in range(self.n))

    def copy(self) -> "Permutation":
        perm = Permutation(self.n)
        perm._q2p = list(self._q2p)
        perm._p2q = list(self._p2q)
        return perm

    def __eq__(self, other) -> bool:
        return isinstance(other, Permutation) and self._q2p == other._q2p

    def __repr__(self) -> str:
        return f"Permutation({self._q2p})"

    # ── updates ──────────────────────────────────────────────────────

    def swap(self, pa: int, pb: int) -> None:
        """Swap two data positions in the mapping."""
        self._check_position(pa)
        self._check_position(pb)
        qa, qb = self._p2q[pa], self._p2q[pb]
        self._q2p[qa], self._q2p[qb] = pb, pa
        self._p2q[pa], self._p2q[pb] = qb, qa
        self.check()

    def compose(self, mapping: Sequence[int]) -> None:
        """Move the qubit at position p to ``mapping[p]`` for every p, in one step."""
        if len(mapping) != self.n:
            raise PreconditionViolation(
                f"mapping has {len(mapping)} entries, expected {self.n}")
        if sorted(mapping) != list(range(self.n)):
            raise PreconditionViolation(f"mapping {list(mapping)} is not a bijection")
        self._q2p = [int(mapping[p]) for p in self._q2p]
        self._p2q = [0] * self.n
        for q, p in enumerate(self._q2p):
            self._p2q[p] = q
        self.check()

    def check(self) -> None:
        if sorted(self._q2p) != list(range(self.n)):
            raise ConsistencyError(f"permutation is not a bijection: {self._q2p}")
        for q, p in enumerate(self._q2p):
            if self._p2q[p] != q:
                raise ConsistencyError(
                    f"inverse mapping out of sync at qubit {q} / position {p}")

    def _check_position(self, p: int) -> None:
        if not 0 <= p < self.n:
            raise PreconditionViolation(f"position {p} out of range [0, {self.n})")

    # ── state helpers ────────────────────────────────────────────────

    def data_index(self, program_index: int) -> int:
        """Map a program-ordered basis index to its data-ordered index."""
        out = 0
        for q in range(self.n):
            if (program_index >> q) & 1:
                out |= 1 << self._q2p[q]
        return out

    def reorder_state(self, state: np.ndarray) -> np.ndarray:
        """Reorder a data-ordered dense vector into program-qubit order.

        Uses numpy tensor transpose -- O(2^n), suitable for n <= ~30.
        """
        n = self.n
        if self.is_identity():
            return state
        # C-order: axis j = bit (n-1-j).  Result axis (n-1-q) comes from
        # tensor axis (n-1-position_of(q)).
        perm = [0] * n
        for q in range(n):
            perm[n - 1 - q] = n - 1 - self._q2p[q]
        tensor = state.reshape([2] * n)
        return tensor.transpose(perm).reshape(-1).copy()

    def swaps_to(self, target: "Permutation") -> list[tuple[int, int]]:
        """Canonical position swaps turning this mapping into ``target``.

        Positions are fixed in ascending order: position p receives the
        qubit ``target`` places there.  At most n-1 swaps.
        """
        work = self.copy()
        swaps: list[tuple[int, int]] = []
        for p in range(self.n):
            want = target.qubit_at(p)
            cur = work.position_of(want)
            if cur != p:
                swaps.append((p, cur))
                work.swap(p, cur)
        return swaps


def validate_qubits(qubits: Iterable[int], n: int) -> list[int]:
    """Range and distinctness check for program qubit indices."""
    qs = [int(q) for q in qubits]
    for q in qs:
        if not 0 <= q < n:
            raise PreconditionViolation(f"qubit {q} out of range [0, {n})")
    if len(set(qs)) != len(qs):
        raise PreconditionViolation(f"qubits must be distinct, got {qs}")
    return qs
