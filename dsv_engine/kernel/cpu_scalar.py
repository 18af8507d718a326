"""CPU scalar kernel: vectorised numpy, one gate at a time.

Operates in-place on a worker's slice (1-D complex128 array).
Positions are slice-local (position p ↔ bit p of the local index).

Amplitudes differing only in bit p are ``1 << p`` apart; reshaping the
slice to ``(-1, 2, 1 << p)`` turns each pair into the two rows of axis 1
without copying, so every update below is a strided view operation.
"""
from __future__ import annotations

import math

import numpy as np

from dsv_engine.errors import PreconditionViolation


def check_local(pos: int, chunk_len: int) -> None:
    k = int(math.log2(chunk_len))
    if not 0 <= pos < k:
        raise PreconditionViolation(
            f"position {pos} not in [0, log2(slice_size)={k}): "
            "worker-selecting positions need an exchange"
        )


def pair_view(chunk: np.ndarray, pos: int) -> np.ndarray:
    """View with axis 1 = bit ``pos``."""
    step = 1 << pos
    return chunk.reshape(-1, 2, step)


def quad_view(chunk: np.ndarray, pa: int, pb: int):
    """Return ``sub(a, b)`` giving the view of amplitudes with bit pa=a, bit pb=b."""
    hi, lo = max(pa, pb), min(pa, pb)
    v = chunk.reshape(-1, 2, 1 << (hi - lo - 1), 2, 1 << lo)
    if pa == hi:
        return lambda a, b: v[:, a, :, b, :]
    return lambda a, b: v[:, b, :, a, :]


def apply_1q(chunk: np.ndarray, pos: int, U: np.ndarray) -> None:
    check_local(pos, len(chunk))
    v = pair_view(chunk, pos)
    a = v[:, 0, :].copy()
    b = v[:, 1, :]
    v[:, 0, :] = U[0, 0] * a + U[0, 1] * b
    v[:, 1, :] = U[1, 0] * a + U[1, 1] * b


def apply_diag_1q(chunk: np.ndarray, pos: int, d0: complex, d1: complex) -> None:
    check_local(pos, len(chunk))
    v = pair_view(chunk, pos)
    if d0 != 1:
        v[:, 0, :] *= d0
    if d1 != 1:
        v[:, 1, :] *= d1


def apply_2q(chunk: np.ndarray, pa: int, pb: int, U: np.ndarray) -> None:
    """U in big-endian sub-space: pa=MSB, pb=LSB."""
    check_local(pa, len(chunk))
    check_local(pb, len(chunk))
    sub = quad_view(chunk, pa, pb)
    cols = [sub(0, 0).copy(), sub(0, 1).copy(), sub(1, 0).copy(), sub(1, 1).copy()]
    for row in range(4):
        out = sub(row >> 1, row & 1)
        acc = None
        for c in range(4):
            u = U[row, c]
            if u == 0:
                continue
            term = u * cols[c]
            acc = term if acc is None else acc + term
        out[...] = 0 if acc is None else acc


def swap_positions(chunk: np.ndarray, pa: int, pb: int) -> None:
    """Exchange bits pa and pb of every index.  Pure data movement."""
    check_local(pa, len(chunk))
    check_local(pb, len(chunk))
    sub = quad_view(chunk, pa, pb)
    tmp = sub(0, 1).copy()
    sub(0, 1)[...] = sub(1, 0)
    sub(1, 0)[...] = tmp


def bit_norm_sq(chunk: np.ndarray, pos: int, value: int) -> float:
    """Σ|a|² over amplitudes whose bit ``pos`` equals ``value``."""
    check_local(pos, len(chunk))
    half = pair_view(chunk, pos)[:, value, :]
    return float(np.vdot(half, half).real)


def zero_bit(chunk: np.ndarray, pos: int, value: int) -> None:
    """Zero amplitudes whose bit ``pos`` equals ``value``."""
    check_local(pos, len(chunk))
    pair_view(chunk, pos)[:, value, :] = 0
