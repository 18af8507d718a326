"""Register pool: disjoint worker teams, one independent register per team.

Ranks are assigned to teams in order: team 0 gets the first
``team_sizes[0]`` ranks of the pool communicator, team 1 the next
``team_sizes[1]``, and so on.  Teams never exchange amplitudes and never
synchronise with each other; the pool-shared random stream is the only
state they have in common.
"""
from __future__ import annotations

from typing import Sequence

from dsv_engine.comm.base import Communicator
from dsv_engine.config import DEFAULT_CONFIG, EngineConfig
from dsv_engine.errors import ConfigurationError
from dsv_engine.register.qubit_register import QubitRegister
from dsv_engine.state.amplitude_store import is_power_of_two, local_qubit_count
from dsv_engine.state.random_streams import RandomStreams
from dsv_engine.utils.logging_config import get_logger

log = get_logger(__name__)


def partition_ranks(pool_size: int, team_sizes: Sequence[int]) -> list[list[int]]:
    """Pool ranks of each team.  ConfigurationError for a malformed partition."""
    sizes = list(team_sizes)
    if not sizes:
        raise ConfigurationError("at least one team is required")
    for s in sizes:
        if not isinstance(s, int) or not is_power_of_two(s):
            raise ConfigurationError(f"team size must be a power of two, got {s!r}")
    if sum(sizes) != pool_size:
        raise ConfigurationError(
            f"team sizes {sizes} sum to {sum(sizes)}, pool has {pool_size} workers")
    teams, start = [], 0
    for s in sizes:
        teams.append(list(range(start, start + s)))
        start += s
    return teams


class RegisterPool:
    """Collective over ``comm``: every pool worker constructs its pool view."""

    def __init__(
        self,
        comm: Communicator,
        team_sizes: Sequence[int],
        n_qubits: int | Sequence[int],
        config: EngineConfig | None = None,
        seed: int | None = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.pool_comm = comm
        self.team_sizes = list(team_sizes)
        teams = partition_ranks(comm.size, self.team_sizes)

        if isinstance(n_qubits, int):
            qubits = [n_qubits] * len(teams)
        else:
            qubits = list(n_qubits)
            if len(qubits) != len(teams):
                raise ConfigurationError(
                    f"{len(qubits)} qubit counts for {len(teams)} teams")
        for size, n in zip(self.team_sizes, qubits):
            local_qubit_count(n, size)

        self.team_id = next(t for t, ranks in enumerate(teams) if comm.rank in ranks)
        self.team_comm = comm.split(self.team_id, comm.rank)
        seed = self.config.seed if seed is None else seed
        self.streams = RandomStreams.for_worker(seed, team_id=self.team_id,
                                                pool_rank=comm.rank)
        self.register = QubitRegister(self.team_comm, qubits[self.team_id],
                                      config=self.config, streams=self.streams,
                                      team_id=self.team_id)
        if comm.rank == 0:
            log.info("pool of %d workers: teams %s, qubits %s",
                     comm.size, self.team_sizes, qubits)

    @property
    def num_teams(self) -> int:
        return len(self.team_sizes)

    @property
    def team_rank(self) -> int:
        return self.team_comm.rank

    @property
    def pool_rank(self) -> int:
        return self.pool_comm.rank

    def pool_draw(self) -> float:
        """One draw from the pool-shared stream (identical on every pool worker)."""
        return self.streams.pool.draw()
