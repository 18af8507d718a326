"""Amplitude store: one worker's contiguous slice of the global vector.

Worker r of W owns global (data-ordered) indices
    r * 2^k  ..  (r + 1) * 2^k - 1,     k = n_qubits - log2(W)
so the low k bits of an index are the offset inside the slice and the
high log2(W) bits select the worker.
"""
from __future__ import annotations

import numpy as np

from dsv_engine.errors import ConfigurationError

DTYPE = np.complex128


def is_power_of_two(x: int) -> bool:
    return x >= 1 and (x & (x - 1)) == 0


def local_qubit_count(n_qubits: int, num_workers: int) -> int:
    """k = n - log2(W).  ConfigurationError for an invalid (n, W) pair."""
    if not isinstance(num_workers, int) or not is_power_of_two(num_workers):
        raise ConfigurationError(f"worker count must be a power of two, got {num_workers!r}")
    if not isinstance(n_qubits, int) or n_qubits < 1:
        raise ConfigurationError(f"qubit count must be a positive int, got {n_qubits!r}")
    w_bits = num_workers.bit_length() - 1
    if n_qubits < w_bits:
        raise ConfigurationError(
            f"{n_qubits} qubits cannot be split over {num_workers} workers "
            f"(need n >= log2(W) = {w_bits})")
    return n_qubits - w_bits


class AmplitudeStore:
    """Local slice of a register owned by worker ``rank`` of ``num_workers``."""

    def __init__(self, n_qubits: int, rank: int, num_workers: int,
                 data: np.ndarray | None = None):
        self.n_qubits = n_qubits
        self.local_qubits = local_qubit_count(n_qubits, num_workers)
        self.worker_qubits = n_qubits - self.local_qubits
        self.num_workers = num_workers
        if not 0 <= rank < num_workers:
            raise ConfigurationError(f"rank {rank} out of range [0, {num_workers})")
        self.rank = rank
        self.local_size = 1 << self.local_qubits
        if data is None:
            data = np.zeros(self.local_size, dtype=DTYPE)
            if rank == 0:
                data[0] = 1.0  # |0…0⟩
        elif data.shape != (self.local_size,):
            raise ConfigurationError(
                f"slice has shape {data.shape}, expected ({self.local_size},)")
        self.data = data

    @property
    def offset(self) -> int:
        """First global index held by this worker."""
        return self.rank * self.local_size

    def owner_of(self, global_index: int) -> int:
        return global_index >> self.local_qubits

    def is_local_position(self, pos: int) -> bool:
        return pos < self.local_qubits

    def worker_bit(self, pos: int) -> int:
        """Value of worker-selecting position ``pos`` for this worker."""
        return (self.rank >> (pos - self.local_qubits)) & 1

    def partner(self, *positions: int) -> int:
        """Rank obtained by flipping the worker bits of ``positions``."""
        r = self.rank
        for p in positions:
            r ^= 1 << (p - self.local_qubits)
        return r

    # ── initialisation ───────────────────────────────────────────────

    def set_basis(self, global_index: int) -> None:
        self.data[:] = 0
        if self.owner_of(global_index) == self.rank:
            self.data[global_index - self.offset] = 1.0

    def set_random(self, rng: np.random.Generator) -> None:
        """Unnormalised Gaussian amplitudes; the caller normalises globally."""
        self.data[:] = (rng.standard_normal(self.local_size)
                        + 1j * rng.standard_normal(self.local_size))

    # ── reductions ───────────────────────────────────────────────────

    def local_norm_sq(self) -> float:
        return float(np.vdot(self.data, self.data).real)

    def copy(self) -> "AmplitudeStore":
        return AmplitudeStore(self.n_qubits, self.rank, self.num_workers,
                              data=self.data.copy())
