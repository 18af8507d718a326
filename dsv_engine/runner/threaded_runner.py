"""Thread runner: one in-process worker per rank, all running ``fn`` in lockstep.

Architecture:  ThreadWorld(size) → [thread per rank] → results[rank]

The first worker to fail aborts the world, so peers blocked in an
exchange or a collective raise CommunicationFailure instead of hanging.
The original failure (not the secondary aborts) is re-raised to the
caller.
"""
from __future__ import annotations

from threading import Thread
from typing import Any, Callable, Sequence

from dsv_engine.comm.threaded import ThreadCommunicator, ThreadWorld
from dsv_engine.config import EngineConfig
from dsv_engine.errors import CommunicationFailure
from dsv_engine.register.pool import RegisterPool
from dsv_engine.register.qubit_register import QubitRegister
from dsv_engine.utils.logging_config import get_logger

log = get_logger(__name__)


def run_workers(
    num_workers: int,
    fn: Callable[..., Any],
    *args,
    timeout: float | None = None,
    **kwargs,
) -> list:
    """Run ``fn(comm, *args, **kwargs)`` on every rank; return per-rank results."""
    world = ThreadWorld(num_workers, timeout=timeout)
    results: list[Any] = [None] * num_workers
    errors: list[BaseException | None] = [None] * num_workers

    def _worker(comm: ThreadCommunicator) -> None:
        try:
            results[comm.rank] = fn(comm, *args, **kwargs)
        except BaseException as e:  # re-raised on the caller's thread below
            errors[comm.rank] = e
            if not isinstance(e, CommunicationFailure):
                log.error("worker %d failed: %r", comm.rank, e)
            world.abort()

    threads = [Thread(target=_worker, args=(comm,), name=f"dsv-worker-{comm.rank}")
               for comm in world.communicators()]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    failed = [e for e in errors if e is not None]
    if failed:
        primary = [e for e in failed if not isinstance(e, CommunicationFailure)]
        raise (primary or failed)[0]
    return results


def run_register(
    num_workers: int,
    n_qubits: int,
    fn: Callable[[QubitRegister], Any],
    config: EngineConfig | None = None,
) -> list:
    """Build one team register over ``num_workers`` threads and run ``fn(register)``."""
    timeout = config.comm_timeout if config else None

    def _body(comm):
        return fn(QubitRegister(comm, n_qubits, config=config))

    return run_workers(num_workers, _body, timeout=timeout)


def run_pool(
    team_sizes: Sequence[int],
    n_qubits: int | Sequence[int],
    fn: Callable[[RegisterPool], Any],
    config: EngineConfig | None = None,
    seed: int | None = None,
) -> list:
    """Build a register pool over ``sum(team_sizes)`` threads and run ``fn(pool)``."""
    timeout = config.comm_timeout if config else None

    def _body(comm):
        return fn(RegisterPool(comm, team_sizes, n_qubits, config=config, seed=seed))

    return run_workers(sum(team_sizes), _body, timeout=timeout)
