"""Register pools: team partitioning and random-stream sharing."""
import numpy as np
import pytest
from dsv_engine.config import EngineConfig
from dsv_engine.errors import ConfigurationError
from dsv_engine.register.pool import partition_ranks
from dsv_engine.runner.threaded_runner import run_pool


def test_partition_ranks_in_order():
    assert partition_ranks(4, [2, 1, 1]) == [[0, 1], [2], [3]]
    assert partition_ranks(8, [8]) == [list(range(8))]


@pytest.mark.parametrize("pool_size,sizes,match", [
    (4, [], "at least one"),
    (3, [3], "power of two"),
    (4, [2, 1], "sum to 3"),
    (2, [2, 0], "power of two"),
])
def test_partition_ranks_rejects(pool_size, sizes, match):
    with pytest.raises(ConfigurationError, match=match):
        partition_ranks(pool_size, sizes)


def test_teams_are_independent_registers():
    def body(pool):
        reg = pool.register
        if pool.team_id == 0:
            reg.pauli_x(0)
            reg.cnot(0, 2)
        else:
            reg.hadamard(1)
        return pool.team_id, pool.team_rank, reg.num_workers, reg.gather_state()

    out = run_pool([2, 1, 1], 3, body)
    assert [(t, r, w) for t, r, w, _ in out] == [(0, 0, 2), (0, 1, 2), (1, 0, 1), (2, 0, 1)]
    s2 = 1 / np.sqrt(2)
    np.testing.assert_allclose(out[0][3], np.eye(8)[5], atol=1e-12)
    np.testing.assert_allclose(out[2][3], s2 * (np.eye(8)[0] + np.eye(8)[2]), atol=1e-12)
    np.testing.assert_allclose(out[3][3], out[2][3], atol=1e-12)


def test_per_team_qubit_counts():
    def body(pool):
        return pool.register.n_qubits

    assert run_pool([2, 2], [3, 5], body) == [3, 3, 5, 5]


def test_stream_sharing():
    def body(pool):
        return (pool.team_id,
                pool.pool_draw(),
                pool.register.shared_draw(),
                pool.streams.local.draw())

    out = run_pool([2, 2], 2, body, seed=42)
    pool_draws = {d for _, d, _, _ in out}
    assert len(pool_draws) == 1
    assert out[0][2] == out[1][2]
    assert out[2][2] == out[3][2]
    assert out[0][2] != out[2][2]
    assert len({d for _, _, _, d in out}) == 4


def test_measurements_agree_within_each_team():
    def body(pool):
        reg = pool.register
        for q in range(3):
            reg.hadamard(q)
        return pool.team_id, [reg.measure(q) for q in range(3)]

    out = run_pool([2, 2, 2, 2], 3, body, config=EngineConfig(seed=3))
    by_team = {}
    for team, record in out:
        by_team.setdefault(team, []).append(record)
    assert all(a == b for a, b in by_team.values())


def test_qubit_count_list_length():
    with pytest.raises(ConfigurationError, match="qubit counts"):
        run_pool([1, 1], [2, 2, 2], lambda pool: None)


def test_team_too_large_for_register():
    with pytest.raises(ConfigurationError, match="cannot be split"):
        run_pool([4], 1, lambda pool: None)
