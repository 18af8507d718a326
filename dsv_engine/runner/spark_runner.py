"""Spark runner: orchestration only, no amplitude shuffles.

Spark parallelises a sweep of independent circuits (parameter scans,
variational loops).  Each circuit is simulated by its own thread team
inside one Spark task, so amplitudes never cross task boundaries; only
the final state vectors are collected on the driver.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import numpy as np

from dsv_engine.circuit.io import validate_circuit_dict
from dsv_engine.config import EngineConfig
from dsv_engine.utils.logging_config import get_logger

if TYPE_CHECKING:
    from pyspark import SparkContext

log = get_logger(__name__)


def _simulate_task(args):
    idx, circuit_dict, num_workers, config = args
    from dsv_engine.runner.circuit_driver import simulate_distributed

    state = simulate_distributed(circuit_dict, num_workers, config=config)
    return idx, state.tobytes(), state.shape


def run_sweep(
    sc: "SparkContext",
    circuits: Sequence[dict],
    num_workers: int = 1,
    config: EngineConfig | None = None,
) -> list[np.ndarray]:
    """Simulate every circuit on an independent ``num_workers`` team.

    Returns the final program-ordered state vectors in input order.
    """
    cds = [validate_circuit_dict(c) for c in circuits]
    if not cds:
        return []
    tasks = [(i, cd, num_workers, config) for i, cd in enumerate(cds)]
    log.info("sweep: %d circuits, %d workers per team", len(tasks), num_workers)
    rdd = sc.parallelize(tasks, numSlices=len(tasks))
    out = rdd.map(_simulate_task).collect()
    states: list[np.ndarray | None] = [None] * len(cds)
    for idx, raw, shape in out:
        states[idx] = np.frombuffer(raw, dtype=np.complex128).reshape(shape).copy()
    return states
