"""In-memory reference simulator (practical up to n ≈ 20, oracle for correctness).

One full program-ordered state vector, no partitioning, no permutation.
Gates are applied by tensor contraction on the ``[2] * n`` view of the
vector, an indexing scheme independent of the slice kernels it checks.
Endianness: little-endian (qubit 0 = bit 0 = LSB), so qubit q is tensor
axis ``n - 1 - q``.
"""
from __future__ import annotations

from typing import Sequence

import numpy as np

from dsv_engine.circuit.io import validate_circuit_dict
from dsv_engine.kernel import gates as gmod

_PAULI = {"I": gmod.I, "X": gmod.X, "Y": gmod.Y, "Z": gmod.Z}


def _n_qubits(psi: np.ndarray) -> int:
    return int(len(psi)).bit_length() - 1


def apply_matrix(psi: np.ndarray, qubits: Sequence[int], U: np.ndarray) -> None:
    """Apply a 2^m × 2^m matrix to ``qubits`` (qubits[0] = MSB of U), in place."""
    n = _n_qubits(psi)
    m = len(qubits)
    axes = [n - 1 - q for q in qubits]
    tensor = psi.reshape([2] * n)
    Ut = np.asarray(U, dtype=np.complex128).reshape([2] * (2 * m))
    out = np.tensordot(Ut, tensor, axes=(list(range(m, 2 * m)), axes))
    # tensordot puts the gate's output axes first
    psi[:] = np.moveaxis(out, list(range(m)), axes).reshape(-1)


def apply_1q(psi: np.ndarray, q: int, U: np.ndarray) -> None:
    apply_matrix(psi, [q], U)


def apply_2q(psi: np.ndarray, qa: int, qb: int, U: np.ndarray) -> None:
    """U in big-endian sub-space: qa=MSB, qb=LSB."""
    apply_matrix(psi, [qa, qb], U)


def basis_state(n: int, index: int = 0) -> np.ndarray:
    psi = np.zeros(1 << n, dtype=np.complex128)
    psi[index] = 1.0
    return psi


def probability_one(psi: np.ndarray, q: int) -> float:
    """P(qubit q = 1) for a normalised vector."""
    idx = np.arange(len(psi))
    return float(np.sum(np.abs(psi[(idx >> q) & 1 == 1]) ** 2))


def expectation(psi: np.ndarray, qubits: Sequence[int], paulis: str) -> float:
    """⟨psi| ⊗ P_i |psi⟩ for Pauli labels such as ``"XZ"``."""
    phi = psi.copy()
    for q, lab in zip(qubits, paulis):
        apply_1q(phi, q, _PAULI[lab.upper()]())
    return float(np.vdot(psi, phi).real)


def simulate(circuit_dict: dict, initial: np.ndarray | None = None) -> np.ndarray:
    """Run a unitary circuit, return the final state vector (complex128)."""
    cd = validate_circuit_dict(circuit_dict)
    n = cd["number_of_qubits"]
    psi = basis_state(n) if initial is None else np.array(initial, dtype=np.complex128)
    for g in cd["gates"]:
        if "gate" not in g:
            raise ValueError("reference simulator only handles unitary gates")
        apply_matrix(psi, g["qubits"], gmod.gate_matrix(g["gate"], g["params"]))
    return psi
