"""Canonical gate matrices and matrix classification.

Convention:
  1-qubit gates: 2×2 complex128 ndarray.
  2-qubit gates: 4×4 complex128 ndarray in *big-endian* sub-space order:
      row/col 0 → (q_a=0, q_b=0)
      row/col 1 → (q_a=0, q_b=1)
      row/col 2 → (q_a=1, q_b=0)
      row/col 3 → (q_a=1, q_b=1)
  where q_a = qubits[0] (the control of controlled gates), q_b = qubits[1].
"""
from __future__ import annotations

import numpy as np

_S2 = 1.0 / np.sqrt(2.0)


def _mat(*rows):
    return np.array(rows, dtype=np.complex128)


# ── 1-qubit fixed ───────────────────────────────────────────────────
def I():
    return _mat([1, 0], [0, 1])

def H():
    return _mat([_S2, _S2], [_S2, -_S2])

def X():
    return _mat([0, 1], [1, 0])

def Y():
    return _mat([0, -1j], [1j, 0])

def Z():
    return _mat([1, 0], [0, -1])

def S():
    return _mat([1, 0], [0, 1j])

def SDG():
    return _mat([1, 0], [0, -1j])

def T():
    return _mat([1, 0], [0, np.exp(1j * np.pi / 4)])


# ── 1-qubit parameterised ──────────────────────────────────────────
def RX(theta: float):
    c, s = np.cos(theta / 2), np.sin(theta / 2)
    return _mat([c, -1j * s], [-1j * s, c])

def RY(theta: float):
    c, s = np.cos(theta / 2), np.sin(theta / 2)
    return _mat([c, -s], [s, c])

def RZ(theta: float):
    return _mat([np.exp(-0.5j * theta), 0], [0, np.exp(0.5j * theta)])

def P(theta: float):
    return _mat([1, 0], [0, np.exp(1j * theta)])

def R(k: int):
    return _mat([1, 0], [0, np.exp(2j * np.pi / 2**k)])

def G(p: int):
    if p < 1:
        raise ValueError(f"G gate needs p >= 1, got {p!r}")
    a = np.sqrt(1.0 / p)
    b = np.sqrt(1.0 - 1.0 / p)
    return _mat([a, -b], [b, a])


# ── 2-qubit fixed (big-endian sub-space) ────────────────────────────
def CNOT():
    return _mat([1,0,0,0],[0,1,0,0],[0,0,0,1],[0,0,1,0])

def SWAP():
    return _mat([1,0,0,0],[0,0,1,0],[0,1,0,0],[0,0,0,1])

def ISWAP():
    return _mat([1,0,0,0],[0,0,1j,0],[0,1j,0,0],[0,0,0,1])

def CZ():
    return _mat([1,0,0,0],[0,1,0,0],[0,0,1,0],[0,0,0,-1])

def CY():
    return _mat([1,0,0,0],[0,1,0,0],[0,0,0,-1j],[0,0,1j,0])


# ── 2-qubit parameterised ──────────────────────────────────────────
def CR(k: int):
    return _mat([1,0,0,0],[0,1,0,0],[0,0,1,0],[0,0,0, np.exp(2j*np.pi/2**k)])

def CPHASE(theta: float):
    return _mat([1,0,0,0],[0,1,0,0],[0,0,1,0],[0,0,0, np.exp(1j*theta)])

def CU(U: np.ndarray, exponent: int = 1):
    Up = np.linalg.matrix_power(np.asarray(U, dtype=np.complex128), exponent)
    return _mat(
        [1, 0, 0, 0],
        [0, 1, 0, 0],
        [0, 0, Up[0,0], Up[0,1]],
        [0, 0, Up[1,0], Up[1,1]],
    )


# ── dispatcher ──────────────────────────────────────────────────────
_FIXED_1Q = {"I": I, "H": H, "X": X, "Y": Y, "Z": Z, "S": S, "SDG": SDG, "T": T}
_PARAM_1Q = {"RX": RX, "RY": RY, "RZ": RZ, "P": P, "R": R, "G": G}
_FIXED_2Q = {"CNOT": CNOT, "SWAP": SWAP, "ISWAP": ISWAP, "CZ": CZ, "CY": CY}
_PARAM_2Q = {"CR": CR, "CPHASE": CPHASE, "CU": CU}

# single required parameter of each parameterised gate
_PARAM_NAME = {"RX": "theta", "RY": "theta", "RZ": "theta", "P": "theta",
               "CPHASE": "theta", "R": "k", "CR": "k", "G": "p"}


def gate_matrix(name: str, params: dict | None = None) -> np.ndarray:
    """Return the unitary matrix for a gate entry."""
    params = params or {}
    if name in _FIXED_1Q:
        return _FIXED_1Q[name]()
    if name in _FIXED_2Q:
        return _FIXED_2Q[name]()
    if name in _PARAM_NAME:
        key = _PARAM_NAME[name]
        return {**_PARAM_1Q, **_PARAM_2Q}[name](params[key])
    if name == "CU":
        return CU(params["U"], params.get("exponent", 1))
    if name == "U":
        return np.asarray(params["U"], dtype=np.complex128)
    raise ValueError(f"unknown gate {name}")


# ── matrix classification ──────────────────────────────────────────
def unitarity_error(U: np.ndarray) -> float:
    """max |U†U − I| entry."""
    d = U.shape[0]
    return float(np.max(np.abs(U.conj().T @ U - np.eye(d))))


def is_diagonal(U: np.ndarray, atol: float = 0.0) -> bool:
    return bool(np.all(np.abs(U - np.diag(np.diag(U))) <= atol))


def is_swap(U: np.ndarray, atol: float = 1e-12) -> bool:
    return U.shape == (4, 4) and bool(np.allclose(U, SWAP(), rtol=0.0, atol=atol))


def is_block_diagonal(U: np.ndarray, which: int, atol: float = 0.0) -> bool:
    """True if the 4×4 U never flips sub-space bit ``which`` (0 → q_a, 1 → q_b).

    Such a U acts on the other qubit with a 2×2 block selected by the
    value of bit ``which``, see :func:`conditional_block`.
    """
    bit = 2 if which == 0 else 1
    for r in range(4):
        for c in range(4):
            if (r & bit) != (c & bit) and abs(U[r, c]) > atol:
                return False
    return True


def conditional_block(U: np.ndarray, which: int, value: int) -> np.ndarray:
    """2×2 block of a block-diagonal 4×4 U acting on the *other* qubit
    when bit ``which`` (0 → q_a, 1 → q_b) equals ``value``."""
    if which == 0:
        idx = [2 * value, 2 * value + 1]
    else:
        idx = [value, 2 + value]
    return np.ascontiguousarray(U[np.ix_(idx, idx)])
