"""Distributed qubit register: one worker's view of a team-wide state vector.

Every public method is collective over the team communicator and must be
called in the same order, with the same arguments, on every worker of the
team.  Arguments are validated before any communication starts, so a bad
call raises on every worker and leaves no exchange half-done.

Gate dispatch (decided once per call from the permutation):

  1q  local position          → local kernel (phase multiply if diagonal)
  1q  worker position, diag   → phase multiply, no exchange
  1q  worker position         → pairwise exchange with rank ^ (1 << bit)
  2q  both local              → local kernel
  2q  SWAP                    → pure data movement (no arithmetic)
  2q  block-diagonal w.r.t. a
      worker-position qubit   → the worker's 2×2 block on the other qubit
  2q  one local, one worker   → pairwise exchange, keep own rows
  2q  both worker             → two single-bit exchanges (qb's bit first,
                                then qa's), keep own row of the quad
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from dsv_engine.comm.base import Communicator
from dsv_engine.config import DEFAULT_CONFIG, EngineConfig
from dsv_engine.errors import ConsistencyError, PreconditionViolation
from dsv_engine.kernel import cpu_batched, cpu_scalar
from dsv_engine.kernel import gates as gmod
from dsv_engine.kernel.cpu_nonlocal import (
    apply_1q_exchange, apply_2q_exchange, apply_2q_exchange_quad,
    extract_half, store_half,
)
from dsv_engine.state.amplitude_store import AmplitudeStore
from dsv_engine.state.permutation import Permutation, validate_qubits
from dsv_engine.state.random_streams import RandomStreams
from dsv_engine.utils.logging_config import get_logger

log = get_logger(__name__)

PAULI_LABELS = {"I": 0, "X": 1, "Y": 2, "Z": 3}
_PAULI = (gmod.I(), gmod.X(), gmod.Y(), gmod.Z())


@dataclass
class ExchangeStats:
    """Per-worker counters of gate paths and data sent."""
    local_gates: int = 0
    exchange_gates: int = 0
    swaps_moved: int = 0
    exchanges: int = 0
    amplitudes_sent: int = 0


class QubitRegister:
    """N-qubit register whose amplitudes are split over the team's workers."""

    def __init__(
        self,
        comm: Communicator,
        n_qubits: int,
        config: EngineConfig | None = None,
        streams: RandomStreams | None = None,
        team_id: int = 0,
    ):
        self.comm = comm
        self.config = config or DEFAULT_CONFIG
        self.store = AmplitudeStore(n_qubits, comm.rank, comm.size)
        self.perm = Permutation(n_qubits)
        self.team_id = team_id
        self.streams = streams or RandomStreams.for_worker(
            self.config.seed, team_id=team_id, pool_rank=comm.rank)
        self.stats = ExchangeStats()
        self._select_kernel()
        if comm.rank == 0:
            log.info("team %d: %d qubits over %d workers (%d local, %d worker-selecting)",
                     team_id, n_qubits, comm.size, self.store.local_qubits,
                     self.store.worker_qubits)

    def _select_kernel(self) -> None:
        if self.config.kernel == "batched":
            self._a1, self._a2 = cpu_batched.apply_1q, cpu_batched.apply_2q
        else:
            self._a1, self._a2 = cpu_scalar.apply_1q, cpu_scalar.apply_2q

    # ── properties ───────────────────────────────────────────────────

    @property
    def n_qubits(self) -> int:
        return self.store.n_qubits

    @property
    def num_workers(self) -> int:
        return self.comm.size

    @property
    def rank(self) -> int:
        return self.comm.rank

    @property
    def local_qubits(self) -> int:
        return self.store.local_qubits

    @property
    def amplitudes(self) -> np.ndarray:
        """This worker's slice, in data-position order."""
        return self.store.data

    @property
    def permutation(self) -> Permutation:
        return self.perm.copy()

    def __repr__(self) -> str:
        return (f"QubitRegister(n={self.n_qubits}, rank={self.rank}/"
                f"{self.num_workers}, perm={self.perm.to_list()})")

    # ── validation ───────────────────────────────────────────────────

    def _matrix(self, U, dim: int, check: bool) -> np.ndarray:
        M = np.asarray(U, dtype=np.complex128)
        if M.shape != (dim, dim):
            raise PreconditionViolation(f"expected a {dim}×{dim} matrix, got shape {M.shape}")
        if not np.all(np.isfinite(M)):
            raise PreconditionViolation("matrix has non-finite entries")
        if check:
            err = gmod.unitarity_error(M)
            if err > self.config.unitarity_tol:
                raise PreconditionViolation(
                    f"matrix is not unitary (max |U^dagger U - I| = {err:.3e})")
        return M

    # ── gate kernel ──────────────────────────────────────────────────

    def apply_1q(self, qubit: int, U, check: bool = True) -> None:
        """Apply a 2×2 matrix to a program qubit."""
        M = self._matrix(U, 2, check)
        (q,) = validate_qubits([qubit], self.n_qubits)
        self._apply_1q_at(self.perm.position_of(q), M)

    def apply_2q(self, qa: int, qb: int, U, check: bool = True) -> None:
        """Apply a 4×4 matrix; qa is the MSB of U's sub-space (the control)."""
        M = self._matrix(U, 4, check)
        if qa == qb:
            raise PreconditionViolation(f"control and target are both qubit {qa}")
        qa, qb = validate_qubits([qa, qb], self.n_qubits)
        self._apply_2q_at(self.perm.position_of(qa), self.perm.position_of(qb), M)

    def _apply_1q_at(self, p: int, U: np.ndarray) -> None:
        store = self.store
        diagonal = gmod.is_diagonal(U)
        if store.is_local_position(p):
            if diagonal:
                cpu_scalar.apply_diag_1q(store.data, p, U[0, 0], U[1, 1])
            else:
                self._a1(store.data, p, U)
            self.stats.local_gates += 1
            return
        b = store.worker_bit(p)
        if diagonal:
            if U[b, b] != 1:
                store.data *= U[b, b]
            self.stats.local_gates += 1
            return
        partner = store.partner(p)
        log.debug("rank %d: 1q exchange on position %d with %d", self.rank, p, partner)
        self._exchange_apply(partner, 1,
                             lambda own, other: apply_1q_exchange(own, other, b, U))
        self.stats.exchange_gates += 1

    def _apply_2q_at(self, pa: int, pb: int, U: np.ndarray) -> None:
        store = self.store
        la, lb = store.is_local_position(pa), store.is_local_position(pb)
        if gmod.is_swap(U):
            self._swap_positions(pa, pb)
            return
        if la and lb:
            self._a2(store.data, pa, pb, U)
            self.stats.local_gates += 1
            return
        # a worker-position qubit that U never flips only selects a 2×2 block
        if not la and gmod.is_block_diagonal(U, 0):
            self._apply_block(pb, gmod.conditional_block(U, 0, store.worker_bit(pa)))
            return
        if not lb and gmod.is_block_diagonal(U, 1):
            self._apply_block(pa, gmod.conditional_block(U, 1, store.worker_bit(pb)))
            return

        if la:
            b = store.worker_bit(pb)
            partner = store.partner(pb)
            log.debug("rank %d: 2q exchange (%d local, %d worker) with %d",
                      self.rank, pa, pb, partner)
            self._exchange_apply(
                partner, 1 << (pa + 1),
                lambda own, other: apply_2q_exchange(own, other, b, pa, U,
                                                     worker_is_qa=False))
        elif lb:
            b = store.worker_bit(pa)
            partner = store.partner(pa)
            log.debug("rank %d: 2q exchange (%d worker, %d local) with %d",
                      self.rank, pa, pb, partner)
            self._exchange_apply(
                partner, 1 << (pb + 1),
                lambda own, other: apply_2q_exchange(own, other, b, pb, U,
                                                     worker_is_qa=True))
        else:
            self._apply_2q_quad(pa, pb, U)
        self.stats.exchange_gates += 1

    def _apply_block(self, p: int, block: np.ndarray) -> None:
        if np.array_equal(block, _PAULI[0]):
            self.stats.local_gates += 1
            return
        self._apply_1q_at(p, block)

    def _apply_2q_quad(self, pa: int, pb: int, U: np.ndarray) -> None:
        """Both positions worker-selecting: gather the quad in two hops."""
        store = self.store
        ba, bb = store.worker_bit(pa), store.worker_bit(pb)
        row = 2 * ba + bb
        p1 = store.partner(pb)
        p2 = store.partner(pa)
        log.debug("rank %d: 2q quad exchange via %d then %d", self.rank, p1, p2)
        data = store.data
        for s, e in self._pieces(1):
            own = data[s:e]
            pair = [None, None]
            pair[bb] = own
            pair[1 - bb] = self._sendrecv(own, p1)
            stacked = np.stack(pair)
            far = self._sendrecv(stacked, p2)
            quad = [None] * 4
            quad[2 * ba], quad[2 * ba + 1] = stacked[0], stacked[1]
            quad[2 * (1 - ba)], quad[2 * (1 - ba) + 1] = far[0], far[1]
            apply_2q_exchange_quad(own, quad, row, U)

    def _swap_positions(self, pa: int, pb: int) -> None:
        """Exchange data positions pa and pb of the amplitudes.  No arithmetic."""
        store = self.store
        data = store.data
        la, lb = store.is_local_position(pa), store.is_local_position(pb)
        self.stats.swaps_moved += 1
        if la and lb:
            cpu_scalar.swap_positions(data, pa, pb)
            return
        if la or lb:
            pl, pw = (pa, pb) if la else (pb, pa)
            keep = store.worker_bit(pw)
            partner = store.partner(pw)
            # amplitudes whose local bit differs from our worker bit move
            send = extract_half(data, pl, 1 - keep)
            recv = np.empty_like(send)
            for s, e in self._pieces(1, len(send)):
                recv[s:e] = self._sendrecv(send[s:e], partner)
            store_half(data, pl, 1 - keep, recv)
            return
        if store.worker_bit(pa) == store.worker_bit(pb):
            return
        partner = store.partner(pa, pb)
        for s, e in self._pieces(1):
            data[s:e] = self._sendrecv(data[s:e], partner)

    # ── exchange plumbing ────────────────────────────────────────────

    def _pieces(self, align: int, length: int | None = None):
        """[start, end) ranges of at most ``exchange_chunk`` amplitudes,
        each a multiple of ``align`` (a power of two)."""
        n = self.store.local_size if length is None else length
        if n == 0:
            return
        piece = 1 << max(int(math.log2(self.config.exchange_chunk)),
                         align.bit_length() - 1)
        piece = min(piece, n)
        for s in range(0, n, piece):
            yield s, min(s + piece, n)

    def _sendrecv(self, arr: np.ndarray, partner: int) -> np.ndarray:
        self.stats.exchanges += 1
        self.stats.amplitudes_sent += arr.size
        return self.comm.sendrecv(arr, partner)

    def _exchange_apply(self, partner: int, align: int,
                        fn: Callable[[np.ndarray, np.ndarray], None]) -> None:
        data = self.store.data
        for s, e in self._pieces(align):
            own = data[s:e]
            fn(own, self._sendrecv(own, partner))

    # ── named gates ──────────────────────────────────────────────────

    def apply_gate(self, name: str, qubits: Sequence[int], params: dict | None = None) -> None:
        try:
            U = gmod.gate_matrix(name, params)
        except (KeyError, TypeError) as e:
            raise PreconditionViolation(f"gate {name}: bad params {params!r}") from e
        except ValueError as e:
            raise PreconditionViolation(str(e)) from e
        qubits = list(qubits)
        if U.shape == (2, 2) and len(qubits) == 1:
            self.apply_1q(qubits[0], U)
        elif U.shape == (4, 4) and len(qubits) == 2:
            self.apply_2q(qubits[0], qubits[1], U)
        else:
            raise PreconditionViolation(
                f"gate {name} with matrix {U.shape} cannot act on {len(qubits)} qubit(s)")

    def hadamard(self, q: int) -> None:
        self.apply_1q(q, gmod.H())

    def pauli_x(self, q: int) -> None:
        self.apply_1q(q, gmod.X())

    def pauli_y(self, q: int) -> None:
        self.apply_1q(q, gmod.Y())

    def pauli_z(self, q: int) -> None:
        self.apply_1q(q, gmod.Z())

    def rotation_x(self, q: int, theta: float) -> None:
        self.apply_1q(q, gmod.RX(theta))

    def rotation_y(self, q: int, theta: float) -> None:
        self.apply_1q(q, gmod.RY(theta))

    def rotation_z(self, q: int, theta: float) -> None:
        self.apply_1q(q, gmod.RZ(theta))

    def phase(self, q: int, theta: float) -> None:
        self.apply_1q(q, gmod.P(theta))

    def cnot(self, control: int, target: int) -> None:
        self.apply_2q(control, target, gmod.CNOT())

    def cz(self, control: int, target: int) -> None:
        self.apply_2q(control, target, gmod.CZ())

    def swap(self, qa: int, qb: int) -> None:
        self.apply_2q(qa, qb, gmod.SWAP())

    # ── noisy channels ───────────────────────────────────────────────

    def apply_channel(self, qubits: Sequence[int], kraus) -> int:
        """Apply a Kraus channel; returns the index of the drawn branch."""
        from dsv_engine.register.channels import apply_channel
        return apply_channel(self, qubits, kraus)

    # ── permutation updates ──────────────────────────────────────────

    def relabel_swap(self, qa: int, qb: int) -> None:
        """Logical SWAP(qa, qb) by exchanging the two qubits' positions.

        No amplitude moves; afterwards ``permutation`` reports the change.
        """
        qa, qb = validate_qubits([qa, qb], self.n_qubits)
        pa, pb = self.perm.position_of(qa), self.perm.position_of(qb)
        self.perm.swap(pa, pb)
        log.debug("rank %d: relabel qubits %d <-> %d (positions %d, %d)",
                  self.rank, qa, qb, pa, pb)

    def reorder(self, target: Permutation | Sequence[int]) -> int:
        """Move data so the permutation becomes ``target``; the logical state
        is unchanged.  Returns the number of position swaps performed."""
        if not isinstance(target, Permutation):
            target = Permutation.from_list(target)
        if target.n != self.n_qubits:
            raise PreconditionViolation(
                f"permutation for {target.n} qubits, register has {self.n_qubits}")
        swaps = self.perm.swaps_to(target)
        for pa, pb in swaps:
            self._swap_positions(pa, pb)
            self.perm.swap(pa, pb)
        if self.perm != target:
            raise ConsistencyError(f"reorder ended at {self.perm}, expected {target}")
        return len(swaps)

    def make_local(self, qubits: Sequence[int]) -> int:
        """Move the given program qubits to local positions.

        Each non-local qubit swaps places with the highest local position
        whose qubit was not requested.  Returns the number of swaps.
        """
        qs = validate_qubits(qubits, self.n_qubits)
        k = self.local_qubits
        if len(qs) > k:
            raise PreconditionViolation(
                f"cannot make {len(qs)} qubits local with only {k} local positions")
        want = set(qs)
        need_in = sorted(q for q in qs if self.perm.position_of(q) >= k)
        victims = [p for p in range(k - 1, -1, -1) if self.perm.qubit_at(p) not in want]
        target = self.perm.copy()
        for q_in, p_out in zip(need_in, victims):
            target.swap(target.position_of(q_in), p_out)
        moved = self.reorder(target)
        if moved:
            log.debug("rank %d: make_local(%s) -> %s", self.rank, qs, self.perm)
        return moved

    # ── measurement interface ────────────────────────────────────────

    def norm(self) -> float:
        return math.sqrt(self.comm.allreduce_sum(self.store.local_norm_sq()))

    def normalize(self) -> float:
        """Rescale by 1/‖ψ‖; returns the norm before rescaling."""
        nrm = self.norm()
        if nrm == 0.0 or not math.isfinite(nrm):
            raise PreconditionViolation(f"cannot normalize a state with norm {nrm}")
        self.store.data /= nrm
        return nrm

    def check_norm(self, tol: float | None = None) -> float:
        tol = self.config.norm_tol if tol is None else tol
        nrm = self.norm()
        if abs(nrm - 1.0) > tol:
            log.error("team %d: norm drifted to %.12f", self.team_id, nrm)
            raise ConsistencyError(f"state norm {nrm!r} deviates from 1 by more than {tol}")
        return nrm

    def get_probability(self, qubit: int) -> float:
        """Probability that ``qubit`` is measured as 1.  Does not mutate state."""
        (q,) = validate_qubits([qubit], self.n_qubits)
        p = self.perm.position_of(q)
        store = self.store
        if store.is_local_position(p):
            local = cpu_scalar.bit_norm_sq(store.data, p, 1)
        else:
            local = store.local_norm_sq() if store.worker_bit(p) == 1 else 0.0
        return float(self.comm.allreduce_sum(local))

    def collapse(self, qubit: int, outcome: int) -> None:
        """Project ``qubit`` onto ``outcome``.  Leaves the state unnormalised."""
        (q,) = validate_qubits([qubit], self.n_qubits)
        if outcome not in (0, 1):
            raise PreconditionViolation(f"outcome must be 0 or 1, got {outcome!r}")
        p = self.perm.position_of(q)
        store = self.store
        if store.is_local_position(p):
            cpu_scalar.zero_bit(store.data, p, 1 - outcome)
        elif store.worker_bit(p) != outcome:
            store.data[:] = 0

    def shared_draw(self) -> float:
        """One draw from the team's state-shared stream."""
        r = self.streams.state.draw()
        if self.config.verify_shared_draws:
            drawn = self.comm.allgather(r)
            if any(v != r for v in drawn):
                log.error("team %d: state-shared draws diverged: %s", self.team_id, drawn)
                raise ConsistencyError(
                    f"state-shared draw #{self.streams.state.draws} diverged across workers")
        return r

    def measure(self, qubit: int) -> int:
        """Projective measurement with the outcome drawn from the state stream."""
        p1 = self.get_probability(qubit)
        outcome = 1 if self.shared_draw() < p1 else 0
        self.collapse(qubit, outcome)
        self.normalize()
        return outcome

    def expectation_value(self, qubits: Sequence[int], paulis: Sequence,
                          coeff: float = 1.0) -> float:
        """coeff · ⟨ψ| ⊗ P_i |ψ⟩ for Pauli labels I/X/Y/Z (or 0..3)."""
        qs = validate_qubits(qubits, self.n_qubits)
        if len(paulis) != len(qs):
            raise PreconditionViolation(
                f"{len(qs)} qubits but {len(paulis)} Pauli labels")
        codes = []
        for lab in paulis:
            code = PAULI_LABELS.get(lab.upper()) if isinstance(lab, str) else lab
            if code not in (0, 1, 2, 3):
                raise PreconditionViolation(f"unknown Pauli label {lab!r}")
            codes.append(code)
        scratch = self.copy()
        for q, code in zip(qs, codes):
            if code:
                scratch.apply_1q(q, _PAULI[code], check=False)
        local = complex(np.vdot(self.store.data, scratch.store.data))
        total = self.comm.allreduce_sum(local)
        return float(coeff * total.real)

    # ── state access ─────────────────────────────────────────────────

    def initialize(self, mode: str = "base", value: int = 0) -> None:
        """``"base"``: basis state |value⟩ (program order);
        ``"rand"``: random normalised state drawn from the local stream."""
        if mode == "base":
            if not 0 <= value < (1 << self.n_qubits):
                raise PreconditionViolation(
                    f"basis index {value} out of range for {self.n_qubits} qubits")
            self.store.set_basis(self.perm.data_index(value))
        elif mode == "rand":
            self.store.set_random(self.streams.local.generator)
            self.normalize()
        else:
            raise PreconditionViolation(f"unknown initialization mode {mode!r}")

    def get_amplitude(self, index: int) -> complex:
        """Amplitude of program-ordered basis index ``index`` (on every worker)."""
        if not 0 <= index < (1 << self.n_qubits):
            raise PreconditionViolation(f"index {index} out of range")
        di = self.perm.data_index(index)
        owner = self.store.owner_of(di)
        val = complex(self.store.data[di - self.store.offset]) if owner == self.rank else None
        return self.comm.bcast(val, root=owner)

    def gather_state(self) -> np.ndarray:
        """Full program-ordered state vector on every worker."""
        parts = self.comm.allgather(self.store.data.copy())
        return self.perm.reorder_state(np.concatenate(parts))

    def copy(self) -> "QubitRegister":
        """Scratch copy with the same layout.  Local; no communication."""
        clone = object.__new__(QubitRegister)
        clone.comm = self.comm
        clone.config = self.config
        clone.store = self.store.copy()
        clone.perm = self.perm.copy()
        clone.team_id = self.team_id
        clone.streams = self.streams
        clone.stats = ExchangeStats()
        clone._select_kernel()
        return clone

    def overlap(self, other: "QubitRegister") -> complex:
        """⟨self|other⟩ for two registers on the same team."""
        if other.n_qubits != self.n_qubits or other.num_workers != self.num_workers:
            raise PreconditionViolation("registers have different shapes")
        if other.perm != self.perm:
            other = other.copy()
            other.reorder(self.perm)
        local = complex(np.vdot(self.store.data, other.store.data))
        return complex(self.comm.allreduce_sum(local))
