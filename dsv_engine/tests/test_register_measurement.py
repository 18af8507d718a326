"""Measurement interface, state access and argument checks on a team register."""
import math

import numpy as np
import pytest
from dsv_engine.circuit.io import validate_circuit_dict
from dsv_engine.config import EngineConfig
from dsv_engine.errors import ConsistencyError, PreconditionViolation
from dsv_engine.kernel import gates as gmod
from dsv_engine.kernel.ref_dense import apply_2q, expectation, probability_one, simulate
from dsv_engine.runner.circuit_driver import run_circuit
from dsv_engine.runner.threaded_runner import run_register
from dsv_engine.tests.fixtures.circuits import random_circuit

S2 = 1.0 / math.sqrt(2.0)


def _bell(reg):
    reg.hadamard(0)
    reg.cnot(0, 1)


def _apply_checking_norm(reg, cd):
    for g in validate_circuit_dict(cd)["gates"]:
        reg.apply_gate(g["gate"], g["qubits"], g["params"])
        reg.check_norm()


class TestProbability:
    @pytest.mark.parametrize("workers", [1, 2, 4])
    def test_probability_does_not_mutate(self, workers):
        def body(reg):
            reg.hadamard(0)
            reg.rotation_y(1, math.pi / 3)
            before = reg.gather_state()
            p0, p1 = reg.get_probability(0), reg.get_probability(1)
            return p0, p1, before, reg.gather_state()

        for p0, p1, before, after in run_register(workers, 2, body):
            assert abs(p0 - 0.5) < 1e-12
            assert abs(p1 - math.sin(math.pi / 6) ** 2) < 1e-12
            np.testing.assert_array_equal(after, before)

    @pytest.mark.parametrize("workers", [2, 8])
    def test_matches_reference_on_random_circuit(self, workers):
        cd = random_circuit(4, depth=2, seed=21)
        psi = simulate(cd)

        def body(reg):
            run_circuit(reg, cd)
            return ([reg.get_probability(q) for q in range(4)],
                    reg.expectation_value([0, 3], "XZ"),
                    reg.expectation_value([2, 1, 0], "YYI"))

        probs, xz, yyi = run_register(workers, 4, body)[0]
        np.testing.assert_allclose(probs, [probability_one(psi, q) for q in range(4)],
                                   atol=1e-12)
        assert abs(xz - expectation(psi, [0, 3], "XZ")) < 1e-12
        assert abs(yyi - expectation(psi, [2, 1, 0], "YYI")) < 1e-12

    @pytest.mark.parametrize("workers", [1, 4])
    def test_collapse_then_normalize(self, workers):
        def body(reg):
            _bell(reg)
            reg.collapse(0, 1)
            old = reg.normalize()
            return old, reg.gather_state()

        old, psi = run_register(workers, 2, body)[0]
        assert abs(old - S2) < 1e-12
        np.testing.assert_allclose(psi, [0, 0, 0, 1], atol=1e-12)

    def test_unnormalised_state_fails_norm_check(self):
        def body(reg):
            _bell(reg)
            reg.collapse(1, 0)
            reg.check_norm()

        with pytest.raises(ConsistencyError, match="norm"):
            run_register(2, 2, body)

    def test_normalize_zero_state(self):
        def body(reg):
            reg.collapse(0, 1)
            reg.normalize()

        with pytest.raises(PreconditionViolation, match="normalize"):
            run_register(2, 2, body)


class TestMeasure:
    @pytest.mark.parametrize("seed", range(6))
    def test_bell_outcomes_agree(self, seed):
        def body(reg):
            _bell(reg)
            return reg.measure(0), reg.measure(1), reg.gather_state()

        results = run_register(4, 3, body, config=EngineConfig(seed=seed))
        assert len({r[:2] for r in results}) == 1
        m0, m1, psi = results[0]
        assert m0 == m1
        assert abs(abs(psi[3 * m0]) - 1.0) < 1e-12

    def test_measure_is_reproducible(self):
        def body(reg):
            for q in range(4):
                reg.hadamard(q)
            return [reg.measure(q) for q in range(4)]

        cfg = EngineConfig(seed=1234)
        assert run_register(4, 4, body, config=cfg) == run_register(4, 4, body, config=cfg)

    def test_verify_shared_draws_detects_divergence(self):
        def body(reg):
            reg.hadamard(0)
            if reg.rank == 1:
                reg.streams.state.draw()
            reg.measure(0)

        with pytest.raises(ConsistencyError, match="diverged"):
            run_register(2, 2, body, config=EngineConfig(verify_shared_draws=True))


class TestExpectation:
    @pytest.mark.parametrize("workers", [1, 2, 4])
    @pytest.mark.parametrize("paulis,expected", [
        ("ZZ", 1.0), ("XX", 1.0), ("YY", -1.0), ("ZI", 0.0), ("XY", 0.0),
    ])
    def test_bell_correlators(self, workers, paulis, expected):
        def body(reg):
            _bell(reg)
            return reg.expectation_value([0, 1], list(paulis))

        for value in run_register(workers, 2, body):
            assert abs(value - expected) < 1e-12

    def test_coefficient_and_state_untouched(self):
        def body(reg):
            reg.hadamard(1)
            before = reg.gather_state()
            value = reg.expectation_value([1], [1], coeff=0.5)
            return value, before, reg.gather_state()

        value, before, after = run_register(4, 2, body)[0]
        assert abs(value - 0.5) < 1e-12
        np.testing.assert_array_equal(after, before)

    def test_bad_label(self):
        def body(reg):
            reg.expectation_value([0], ["W"])

        with pytest.raises(PreconditionViolation, match="Pauli"):
            run_register(1, 1, body)


class TestStateAccess:
    @pytest.mark.parametrize("workers", [1, 2, 8])
    def test_initialize_base(self, workers):
        def body(reg):
            reg.initialize("base", 5)
            return reg.gather_state(), reg.get_amplitude(5), reg.get_amplitude(4)

        psi, a5, a4 = run_register(workers, 3, body)[0]
        assert psi[5] == 1.0 and np.count_nonzero(psi) == 1
        assert a5 == 1.0 and a4 == 0.0

    def test_initialize_base_after_relabel(self):
        def body(reg):
            reg.relabel_swap(0, 2)
            reg.initialize("base", 1)
            return reg.gather_state()

        psi = run_register(4, 3, body)[0]
        assert psi[1] == 1.0

    def test_initialize_rand(self):
        def body(reg):
            reg.initialize("rand")
            reg.check_norm()
            return reg.gather_state()

        cfg = EngineConfig(seed=9)
        a = run_register(4, 4, body, config=cfg)
        b = run_register(4, 4, body, config=cfg)
        np.testing.assert_array_equal(a[0], b[0])
        np.testing.assert_array_equal(a[0], a[3])
        assert abs(np.linalg.norm(a[0]) - 1.0) < 1e-12

    def test_get_amplitude_on_every_worker(self):
        def body(reg):
            reg.hadamard(2)
            return reg.get_amplitude(4)

        assert all(abs(a - S2) < 1e-12 for a in run_register(4, 3, body))

    def test_overlap(self):
        def body(reg):
            reg.hadamard(0)
            other = reg.copy()
            other.reorder([2, 1, 0])
            same = reg.overlap(other)
            other.pauli_z(0)
            return same, reg.overlap(other)

        same, orth = run_register(4, 3, body)[0]
        assert abs(same - 1.0) < 1e-12
        assert abs(orth) < 1e-12

    def test_copy_is_independent(self):
        def body(reg):
            scratch = reg.copy()
            scratch.pauli_x(0)
            return reg.get_amplitude(0), scratch.get_amplitude(1)

        assert run_register(2, 2, body)[0] == (1.0, 1.0)


class TestPermutationOps:
    @pytest.mark.parametrize("workers", [2, 4])
    def test_relabel_swap_is_logical_swap(self, workers):
        def body(reg):
            reg.pauli_x(0)
            reg.relabel_swap(0, 2)
            return reg.gather_state(), reg.permutation.to_list(), reg.stats.exchanges

        psi, perm, exchanges = run_register(workers, 3, body)[0]
        assert psi[4] == 1.0
        assert perm == [2, 1, 0]
        assert exchanges == 0

    @pytest.mark.parametrize("workers", [2, 4, 8])
    def test_reorder_keeps_state(self, workers):
        def body(reg):
            reg.initialize("rand")
            before = reg.gather_state()
            reg.reorder([3, 0, 2, 1])
            mid = reg.gather_state()
            reg.reorder([0, 1, 2, 3])
            return before, mid, reg.gather_state(), reg.permutation.is_identity()

        before, mid, after, ident = run_register(workers, 4, body)[0]
        np.testing.assert_array_equal(mid, before)
        np.testing.assert_array_equal(after, before)
        assert ident

    def test_make_local(self):
        def body(reg):
            reg.initialize("rand")
            before = reg.gather_state()
            moved = reg.make_local([3, 2])
            perm = reg.permutation
            return (moved, before, reg.gather_state(),
                    perm.position_of(2) < reg.local_qubits,
                    perm.position_of(3) < reg.local_qubits)

        moved, before, after, l2, l3 = run_register(4, 4, body)[0]
        assert moved == 2 and l2 and l3
        np.testing.assert_array_equal(after, before)

    @pytest.mark.parametrize("workers", [2, 4, 8])
    @pytest.mark.parametrize("target", [[3, 0, 2, 1], [1, 3, 2, 0], [2, 3, 0, 1]])
    def test_gates_after_reorder(self, workers, target):
        cd = random_circuit(4, depth=3, seed=7)

        def body(reg):
            reg.initialize("rand")
            before = reg.gather_state()
            reg.reorder(target)
            _apply_checking_norm(reg, cd)
            return before, reg.gather_state()

        before, psi = run_register(workers, 4, body, config=EngineConfig(seed=3))[0]
        np.testing.assert_allclose(psi, simulate(cd, initial=before), atol=1e-10)

    @pytest.mark.parametrize("workers", [2, 4, 8])
    @pytest.mark.parametrize("qa,qb", [(0, 3), (1, 2), (3, 1)])
    def test_gates_after_relabel_swap(self, workers, qa, qb):
        cd = random_circuit(4, depth=3, seed=11)

        def body(reg):
            reg.initialize("rand")
            before = reg.gather_state()
            reg.relabel_swap(qa, qb)
            _apply_checking_norm(reg, cd)
            return before, reg.gather_state(), reg.permutation.is_identity()

        before, psi, ident = run_register(workers, 4, body, config=EngineConfig(seed=5))[0]
        expected = before.copy()
        apply_2q(expected, qa, qb, gmod.SWAP())
        assert not ident
        np.testing.assert_allclose(psi, simulate(cd, initial=expected), atol=1e-10)

    @pytest.mark.parametrize("workers", [4, 8])
    def test_gates_after_make_local(self, workers):
        cd = random_circuit(4, depth=2, seed=13)

        def body(reg):
            reg.make_local([3])
            _apply_checking_norm(reg, cd)
            return reg.gather_state()

        psi = run_register(workers, 4, body)[0]
        np.testing.assert_allclose(psi, simulate(cd), atol=1e-10)

    def test_make_local_too_many(self):
        def body(reg):
            reg.make_local([0, 1, 2])

        with pytest.raises(PreconditionViolation, match="local positions"):
            run_register(4, 3, body)


class TestPreconditions:
    def test_non_unitary_rejected_before_mutation(self):
        def body(reg):
            with pytest.raises(PreconditionViolation, match="unitary"):
                reg.apply_1q(0, 2 * gmod.H())
            with pytest.raises(PreconditionViolation, match="4×4"):
                reg.apply_2q(0, 1, gmod.H())
            with pytest.raises(PreconditionViolation, match="out of range"):
                reg.apply_1q(3, gmod.X())
            with pytest.raises(PreconditionViolation, match="both qubit"):
                reg.apply_2q(1, 1, gmod.CNOT())
            with pytest.raises(PreconditionViolation, match="outcome"):
                reg.collapse(0, 2)
            with pytest.raises(PreconditionViolation, match="p >= 1"):
                reg.apply_gate("G", [0], {"p": 0})
            return reg.gather_state()

        psi = run_register(2, 2, body)[0]
        np.testing.assert_array_equal(psi, [1, 0, 0, 0])

    def test_unknown_gate(self):
        def body(reg):
            reg.apply_gate("FOO", [0])

        with pytest.raises(PreconditionViolation):
            run_register(1, 1, body)
