"""Circuit dict validation and parsing.

Endianness convention: LITTLE-ENDIAN.
  qubit 0 = bit 0 (LSB) of the state-vector index.
  |q_{n-1} ... q_1 q_0>  has index  q_0 + 2*q_1 + ... + 2^{n-1}*q_{n-1}.

Entries of ``gates`` are one of:
  {"qubits": [q],    "gate": "H"}
  {"qubits": [a, b], "gate": "CR", "params": {"k": 3}}     (or "CR3")
  {"qubits": [a, b], "gate": "U",  "params": {"U": 4x4}}   custom unitary
  {"qubits": [q],    "channel": "depolarizing", "params": {"p": 0.1}}
  {"qubits": [q, ...], "measure": true}
"""
from __future__ import annotations

import re
from typing import Any

import numpy as np

from dsv_engine.register.channels import CHANNELS

ENDIANNESS = "little"

GATES_1Q_NO_PARAMS = frozenset({"I", "H", "X", "Y", "Z", "S", "SDG", "T"})
GATES_1Q_PARAM_SPEC: dict[str, dict[str, type | str]] = {
    "RX": {"theta": float},
    "RY": {"theta": float},
    "RZ": {"theta": float},
    "P":  {"theta": float},
    "R":  {"k": int},
    "G":  {"p": int},
}
GATES_2Q_NO_PARAMS = frozenset({"CNOT", "SWAP", "ISWAP", "CZ", "CY"})
GATES_2Q_PARAM_SPEC: dict[str, dict[str, type | str]] = {
    "CR": {"k": int},
    "CPHASE": {"theta": float},
    "CU": {"U": "array", "exponent": int},
}

ALL_1Q = GATES_1Q_NO_PARAMS | set(GATES_1Q_PARAM_SPEC)
ALL_2Q = GATES_2Q_NO_PARAMS | set(GATES_2Q_PARAM_SPEC)
ALL_GATES = ALL_1Q | ALL_2Q | {"U"}

CHANNEL_ARITY = {name: (2 if name == "depolarizing_2q" else 1) for name in CHANNELS}


# ── name-encoded parsing ────────────────────────────────────────────
def _parse_name_encoded(raw: str) -> tuple[str, dict]:
    """CR3 → ('CR', {'k':3}),  R3 → ('R', {'k':3}),  H → ('H', {})."""
    m = re.match(r"^CR(\d+)$", raw)
    if m:
        return "CR", {"k": int(m.group(1))}
    m = re.match(r"^R(\d+)$", raw)
    if m:
        return "R", {"k": int(m.group(1))}
    return raw, {}


# ── validation ──────────────────────────────────────────────────────
def validate_circuit_dict(d: dict[str, Any]) -> dict:
    """Validate and normalise a circuit dict.  Raises ValueError on bad input."""
    if not isinstance(d, dict):
        raise ValueError("circuit must be a dict")
    missing = {"number_of_qubits", "gates"} - set(d)
    if missing:
        raise ValueError(f"missing required keys: {missing}")
    extra = set(d) - {"number_of_qubits", "gates"}
    if extra:
        raise ValueError(f"unknown top-level keys: {extra}")

    n = d["number_of_qubits"]
    if not isinstance(n, int) or n < 1:
        raise ValueError(f"number_of_qubits must be positive int, got {n!r}")

    if not isinstance(d["gates"], list):
        raise ValueError("gates must be a list")

    return {
        "number_of_qubits": n,
        "gates": [_validate_entry(g, n, i) for i, g in enumerate(d["gates"])],
    }


def _validate_qubits(g: dict, nq: int, tag: str) -> list[int]:
    qubits = g["qubits"]
    if not isinstance(qubits, list) or not all(isinstance(q, int) for q in qubits):
        raise ValueError(f"{tag}: qubits must be list[int]")
    for q in qubits:
        if q < 0 or q >= nq:
            raise ValueError(f"{tag}: qubit {q} out of range [0, {nq})")
    if len(set(qubits)) != len(qubits):
        raise ValueError(f"{tag}: repeated qubit in {qubits}")
    return list(qubits)


def _validate_entry(g: dict, nq: int, idx: int) -> dict:
    tag = f"gate[{idx}]"
    if not isinstance(g, dict):
        raise ValueError(f"{tag}: must be a dict")
    kinds = [k for k in ("gate", "channel", "measure") if k in g]
    if "qubits" not in g or len(kinds) != 1:
        raise ValueError(f"{tag}: needs 'qubits' and exactly one of gate/channel/measure")
    kind = kinds[0]
    if set(g) - {"qubits", kind, "params"}:
        raise ValueError(f"{tag}: unknown keys {set(g) - {'qubits', kind, 'params'}}")
    qubits = _validate_qubits(g, nq, tag)

    if kind == "measure":
        if not qubits:
            raise ValueError(f"{tag}: measure needs at least one qubit")
        return {"qubits": qubits, "measure": True}
    if kind == "channel":
        return _validate_channel(g, qubits, tag)
    return _validate_gate(g, qubits, tag)


def _validate_channel(g: dict, qubits: list[int], tag: str) -> dict:
    name = g["channel"]
    if name not in CHANNELS:
        raise ValueError(f"{tag}: unsupported channel '{name}'")
    if len(qubits) != CHANNEL_ARITY[name]:
        raise ValueError(f"{tag}: {name} needs {CHANNEL_ARITY[name]} qubit(s), got {len(qubits)}")
    return {"qubits": qubits, "channel": name, "params": dict(g.get("params") or {})}


def _validate_gate(g: dict, qubits: list[int], tag: str) -> dict:
    base, name_params = _parse_name_encoded(g["gate"])
    if base not in ALL_GATES:
        raise ValueError(f"{tag}: unsupported gate '{g['gate']}'")

    merged = {**name_params, **(g.get("params") or {})}

    if base == "U":
        if "U" not in merged:
            raise ValueError(f"{tag}: U requires param 'U'")
        U = np.asarray(merged["U"], dtype=np.complex128)
        if U.shape not in ((2, 2), (4, 4)):
            raise ValueError(f"{tag}: custom U must be 2x2 or 4x4, got {U.shape}")
        expected_arity = 1 if U.shape == (2, 2) else 2
    else:
        expected_arity = 1 if base in ALL_1Q else 2
    if len(qubits) != expected_arity:
        raise ValueError(f"{tag}: {base} needs {expected_arity} qubit(s), got {len(qubits)}")

    spec = GATES_1Q_PARAM_SPEC.get(base) or GATES_2Q_PARAM_SPEC.get(base) or {}
    for key, expected in spec.items():
        if key not in merged:
            if base == "CU" and key == "exponent":
                continue
            raise ValueError(f"{tag}: {base} requires param '{key}'")
        if expected != "array" and not isinstance(merged[key], (expected, int)):
            raise ValueError(f"{tag}: param '{key}' bad type")
    if base == "G" and merged["p"] < 1:
        raise ValueError(f"{tag}: G needs p >= 1")

    return {"qubits": qubits, "gate": base, "params": merged}
