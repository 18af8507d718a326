"""Tests for circuit dict validation."""
import pytest
import numpy as np
from dsv_engine.circuit.io import validate_circuit_dict
from dsv_engine.tests.fixtures.circuits import bell_2q, cr3_encoded, noisy_bell, ry_theta


def test_valid_bell():
    d = validate_circuit_dict(bell_2q())
    assert d["number_of_qubits"] == 2
    assert len(d["gates"]) == 2
    assert d["gates"][0]["gate"] == "H"
    assert d["gates"][1]["gate"] == "CNOT"


def test_valid_ry():
    d = validate_circuit_dict(ry_theta())
    assert d["gates"][0]["gate"] == "RY"
    assert abs(d["gates"][0]["params"]["theta"] - np.pi / 3) < 1e-12


def test_name_encoded_cr3():
    d = validate_circuit_dict(cr3_encoded())
    cr = d["gates"][2]
    assert cr["gate"] == "CR"
    assert cr["params"]["k"] == 3


def test_channel_and_measure_entries():
    d = validate_circuit_dict(noisy_bell())
    assert d["gates"][1] == {"qubits": [0], "channel": "depolarizing", "params": {"p": 0.2}}
    assert d["gates"][3] == {"qubits": [0, 1], "measure": True}


def test_custom_unitary_arity_from_shape():
    d = validate_circuit_dict({
        "number_of_qubits": 2,
        "gates": [{"qubits": [0, 1], "gate": "U", "params": {"U": np.eye(4)}}],
    })
    assert d["gates"][0]["gate"] == "U"
    with pytest.raises(ValueError, match="needs 1"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [0, 1], "gate": "U", "params": {"U": np.eye(2)}}],
        })


def test_custom_unitary_bad_shape():
    with pytest.raises(ValueError, match="2x2 or 4x4"):
        validate_circuit_dict({
            "number_of_qubits": 3,
            "gates": [{"qubits": [0], "gate": "U", "params": {"U": np.eye(8)}}],
        })


def test_cu_exponent_optional():
    d = validate_circuit_dict({
        "number_of_qubits": 2,
        "gates": [{"qubits": [0, 1], "gate": "CU", "params": {"U": np.eye(2)}}],
    })
    assert "exponent" not in d["gates"][0]["params"]


def test_missing_nqubits():
    with pytest.raises(ValueError, match="missing required keys"):
        validate_circuit_dict({"gates": []})


def test_bad_gate_name():
    with pytest.raises(ValueError, match="unsupported gate"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [0], "gate": "FOOBAR"}],
        })


def test_bad_channel_name():
    with pytest.raises(ValueError, match="unsupported channel"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [0], "channel": "erasure"}],
        })


def test_channel_arity():
    with pytest.raises(ValueError, match="needs 2"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [0], "channel": "depolarizing_2q", "params": {"p": 0.1}}],
        })


def test_wrong_arity():
    with pytest.raises(ValueError, match="needs 1"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [0, 1], "gate": "H"}],
        })


def test_qubit_out_of_range():
    with pytest.raises(ValueError, match="out of range"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [5], "gate": "X"}],
        })


def test_repeated_qubit():
    with pytest.raises(ValueError, match="repeated"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [1, 1], "gate": "CNOT"}],
        })


def test_entry_needs_exactly_one_kind():
    with pytest.raises(ValueError, match="exactly one"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [{"qubits": [0], "gate": "X", "measure": True}],
        })


def test_missing_param():
    with pytest.raises(ValueError, match="requires param 'theta'"):
        validate_circuit_dict({
            "number_of_qubits": 1,
            "gates": [{"qubits": [0], "gate": "RX"}],
        })


def test_extra_toplevel_key():
    with pytest.raises(ValueError, match="unknown top-level"):
        validate_circuit_dict({
            "number_of_qubits": 2,
            "gates": [],
            "name": "bell",
        })


def test_g_gate_needs_positive_p():
    with pytest.raises(ValueError, match="p >= 1"):
        validate_circuit_dict({
            "number_of_qubits": 1,
            "gates": [{"qubits": [0], "gate": "G", "params": {"p": 0}}],
        })
