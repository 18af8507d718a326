"""Butterfly-exchange kernels for non-local gates (pure array ops, no I/O).

When a gate touches a data position p >= k = log2(slice_size), the paired
amplitudes live on different workers.  The caller has already exchanged
slices with the partner; these functions compute only the rows the
calling worker keeps.

Terminology:
    k = log2(slice_size)          local positions: 0 .. k-1
    worker_bit = p - k            bit position *within the worker rank*
    rank r  pairs with  r XOR (1 << worker_bit)
    my_bit = (r >> worker_bit) & 1

Three cases for 2-qubit gates (qa = MSB of U's sub-space, qb = LSB):
    A) qa local,  qb worker  →  keep rows {my_bit, 2 + my_bit}
    B) qa worker, qb local   →  keep rows {2*my_bit, 2*my_bit + 1}
    C) both worker           →  keep the single row 2*bit_a + bit_b of
                                a quad of slices gathered in two hops
"""
from __future__ import annotations

import numpy as np

from dsv_engine.kernel.cpu_scalar import pair_view


def apply_1q_exchange(own: np.ndarray, other: np.ndarray,
                      my_bit: int, U: np.ndarray) -> None:
    """1-qubit gate across two partner slices.  Modifies ``own`` in-place."""
    b = my_bit
    if U[b, 1 - b] == 0:
        own *= U[b, b]
        return
    new = U[b, b] * own + U[b, 1 - b] * other
    own[:] = new


def apply_2q_exchange(own: np.ndarray, other: np.ndarray, my_bit: int,
                      local_pos: int, U: np.ndarray,
                      worker_is_qa: bool) -> None:
    """2-qubit gate with one local and one worker position.

    ``own``/``other`` are the slices with worker bit ``my_bit`` and
    ``1 - my_bit``.  Modifies ``own`` in-place.
    """
    c = {my_bit: pair_view(own, local_pos), 1 - my_bit: pair_view(other, local_pos)}
    if worker_is_qa:
        # sub-space index 2*w + l
        cols = [c[0][:, 0, :], c[0][:, 1, :], c[1][:, 0, :], c[1][:, 1, :]]
        rows = [2 * my_bit, 2 * my_bit + 1]
    else:
        # sub-space index 2*l + w
        cols = [c[0][:, 0, :], c[1][:, 0, :], c[0][:, 1, :], c[1][:, 1, :]]
        rows = [my_bit, 2 + my_bit]
    V = np.stack(cols)  # (4, blocks, step) copy of the pre-gate values
    R = np.tensordot(U[rows], V, axes=1)  # (2, blocks, step)
    mine = c[my_bit]
    mine[:, 0, :] = R[0]
    mine[:, 1, :] = R[1]


def apply_2q_exchange_quad(own: np.ndarray, quad: list[np.ndarray],
                           row: int, U: np.ndarray) -> None:
    """2-qubit gate, both positions worker-selecting.

    ``quad[i]`` is the slice of the worker whose (bit_a, bit_b) == divmod(i, 2);
    ``row`` is this worker's own index in that ordering.
    """
    acc = None
    for col in range(4):
        u = U[row, col]
        if u == 0:
            continue
        term = u * quad[col]
        acc = term if acc is None else acc + term
    own[:] = 0 if acc is None else acc


# ── pure data movement (SWAP-type) ─────────────────────────────────

def extract_half(chunk: np.ndarray, local_pos: int, value: int) -> np.ndarray:
    """Contiguous copy of the amplitudes whose local bit equals ``value``."""
    return np.ascontiguousarray(pair_view(chunk, local_pos)[:, value, :]).ravel()


def store_half(chunk: np.ndarray, local_pos: int, value: int,
               data: np.ndarray) -> None:
    """Inverse of :func:`extract_half`."""
    v = pair_view(chunk, local_pos)
    v[:, value, :] = data.reshape(v.shape[0], v.shape[2])
