"""CPU batched kernel: gather → GEMM → scatter.

Same interface as cpu_scalar but batches all pair/quad updates into a
single matrix multiply to maximise BLAS utilisation.  Selected with
``EngineConfig(kernel="batched")``.
"""
from __future__ import annotations

import numpy as np

from dsv_engine.kernel.cpu_scalar import check_local


def _pair_indices(n: int, pos: int) -> tuple[np.ndarray, np.ndarray]:
    step = 1 << pos
    block = step << 1
    base = np.arange(0, n, block)
    off = np.arange(step)
    idx0 = (base[:, None] + off[None, :]).ravel()
    return idx0, idx0 + step


def apply_1q(chunk: np.ndarray, pos: int, U: np.ndarray) -> None:
    check_local(pos, len(chunk))
    idx0, idx1 = _pair_indices(len(chunk), pos)
    # gather into (2, M) matrix
    V = np.stack([chunk[idx0], chunk[idx1]])
    R = U @ V  # single GEMM
    chunk[idx0] = R[0]
    chunk[idx1] = R[1]


def apply_2q(chunk: np.ndarray, pa: int, pb: int, U: np.ndarray) -> None:
    check_local(pa, len(chunk))
    check_local(pb, len(chunk))
    idx = np.arange(len(chunk))
    bases = idx[((idx >> pa) & 1 == 0) & ((idx >> pb) & 1 == 0)]
    i00 = bases
    i01 = bases | (1 << pb)
    i10 = bases | (1 << pa)
    i11 = bases | (1 << pa) | (1 << pb)
    V = np.stack([chunk[i00], chunk[i01], chunk[i10], chunk[i11]])  # (4, M)
    R = U @ V  # single GEMM
    chunk[i00], chunk[i01], chunk[i10], chunk[i11] = R[0], R[1], R[2], R[3]
