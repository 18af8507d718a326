"""Noisy channels applied by stochastic unravelling.

A channel ρ → Σ K_i ρ K_i† is applied to a state vector by drawing one
branch i with probability p_i = ‖K_i ψ‖², applying K_i and renormalising.
Averaged over draws this reproduces the channel.

The draw comes from the team's *state-shared* stream, so every worker
holding a slice of the register picks the same branch.

When every K_i†K_i is proportional to the identity (a mixture of
unitaries, e.g. depolarizing or dephasing) the p_i do not depend on the
state and are computed once; otherwise each p_i costs one scratch
application of K_i plus a norm reduction.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import numpy as np

from dsv_engine.errors import ConsistencyError, PreconditionViolation
from dsv_engine.kernel import gates as gmod
from dsv_engine.state.permutation import validate_qubits
from dsv_engine.utils.logging_config import get_logger

if TYPE_CHECKING:
    from dsv_engine.register.qubit_register import QubitRegister

log = get_logger(__name__)


class KrausSet:
    """Ordered 1- or 2-qubit Kraus operators with Σ K†K = I."""

    def __init__(self, operators: Sequence, tol: float = 1e-8):
        ops = [np.asarray(K, dtype=np.complex128) for K in operators]
        if not ops:
            raise PreconditionViolation("a channel needs at least one Kraus operator")
        dim = ops[0].shape[0]
        if dim not in (2, 4) or any(K.shape != (dim, dim) for K in ops):
            raise PreconditionViolation(
                f"Kraus operators must all be 2×2 or all 4×4, got {[K.shape for K in ops]}")
        completeness = sum(K.conj().T @ K for K in ops)
        err = float(np.max(np.abs(completeness - np.eye(dim))))
        if err > tol:
            raise PreconditionViolation(
                f"Kraus set is not trace preserving (max |Σ K^dagger K - I| = {err:.3e})")
        self.operators = ops
        self.dim = dim
        self.num_qubits = 1 if dim == 2 else 2
        self.fixed_probabilities = self._fixed_probabilities(ops, tol)

    @staticmethod
    def _fixed_probabilities(ops, tol) -> list[float] | None:
        probs = []
        for K in ops:
            KK = K.conj().T @ K
            c = KK[0, 0].real
            if np.max(np.abs(KK - c * np.eye(K.shape[0]))) > tol:
                return None
            probs.append(float(c))
        return probs

    @property
    def is_unitary_mixture(self) -> bool:
        return self.fixed_probabilities is not None

    def __len__(self) -> int:
        return len(self.operators)

    def __repr__(self) -> str:
        return f"KrausSet({len(self)} × {self.dim}×{self.dim})"


# ── library channels ────────────────────────────────────────────────

def identity_channel(num_qubits: int = 1) -> KrausSet:
    return KrausSet([np.eye(2 ** num_qubits)])


def bit_flip(p: float) -> KrausSet:
    return KrausSet([np.sqrt(1 - p) * gmod.I(), np.sqrt(p) * gmod.X()])


def dephasing(p: float) -> KrausSet:
    """Phase flip with probability p."""
    return KrausSet([np.sqrt(1 - p) * gmod.I(), np.sqrt(p) * gmod.Z()])


def depolarizing(p: float) -> KrausSet:
    """ρ → (1 - p) ρ + p I/2."""
    return KrausSet([
        np.sqrt(1 - 3 * p / 4) * gmod.I(),
        np.sqrt(p / 4) * gmod.X(),
        np.sqrt(p / 4) * gmod.Y(),
        np.sqrt(p / 4) * gmod.Z(),
    ])


def two_qubit_depolarizing(p: float) -> KrausSet:
    """ρ → (1 - p) ρ + p I/4 on two qubits."""
    paulis = (gmod.I(), gmod.X(), gmod.Y(), gmod.Z())
    ops = []
    for i, a in enumerate(paulis):
        for j, b in enumerate(paulis):
            w = 1 - 15 * p / 16 if i == j == 0 else p / 16
            ops.append(np.sqrt(w) * np.kron(a, b))
    return KrausSet(ops)


def amplitude_damping(gamma: float) -> KrausSet:
    return KrausSet([
        np.array([[1, 0], [0, np.sqrt(1 - gamma)]], dtype=np.complex128),
        np.array([[0, np.sqrt(gamma)], [0, 0]], dtype=np.complex128),
    ])


CHANNELS = {
    "identity": lambda: identity_channel(),
    "bit_flip": bit_flip,
    "dephasing": dephasing,
    "depolarizing": depolarizing,
    "depolarizing_2q": two_qubit_depolarizing,
    "amplitude_damping": amplitude_damping,
}


def channel_by_name(name: str, params: dict | None = None) -> KrausSet:
    if name not in CHANNELS:
        raise PreconditionViolation(f"unknown channel {name!r}")
    return CHANNELS[name](**(params or {}))


# ── application ─────────────────────────────────────────────────────

def _apply_operator(reg: "QubitRegister", qubits: list[int], K: np.ndarray) -> None:
    if len(qubits) == 1:
        reg.apply_1q(qubits[0], K, check=False)
    else:
        reg.apply_2q(qubits[0], qubits[1], K, check=False)


def branch_probabilities(reg: "QubitRegister", qubits: Sequence[int],
                         kraus: KrausSet) -> list[float]:
    """p_i = ‖K_i ψ‖² for the current state (collective)."""
    if kraus.fixed_probabilities is not None:
        return list(kraus.fixed_probabilities)
    probs = []
    for K in kraus.operators:
        scratch = reg.copy()
        _apply_operator(scratch, list(qubits), K)
        probs.append(scratch.norm() ** 2)
    return probs


def apply_channel(reg: "QubitRegister", qubits: Sequence[int], kraus) -> int:
    """Draw one Kraus branch, apply it and renormalise.  Returns the branch index."""
    if not isinstance(kraus, KrausSet):
        kraus = KrausSet(kraus, tol=reg.config.kraus_tol)
    qs = validate_qubits(qubits, reg.n_qubits)
    if len(qs) != kraus.num_qubits:
        raise PreconditionViolation(
            f"{kraus.num_qubits}-qubit channel applied to {len(qs)} qubit(s)")

    probs = branch_probabilities(reg, qs, kraus)
    total = float(sum(probs))
    if abs(total - 1.0) > reg.config.probability_tol:
        log.error("team %d: channel branch probabilities sum to %.12f",
                  reg.team_id, total)
        raise ConsistencyError(f"Kraus branch probabilities sum to {total!r}, expected 1")

    r = reg.shared_draw() * total
    idx = int(np.searchsorted(np.cumsum(probs), r, side="right"))
    idx = min(idx, len(probs) - 1)
    log.debug("team %d: channel on %s picked branch %d (p=%.6f)",
              reg.team_id, qs, idx, probs[idx])

    _apply_operator(reg, qs, kraus.operators[idx])
    reg.normalize()
    return idx
