"""MPI transport via mpi4py.

Launch one process per worker, e.g.::

    mpirun -n 4 python my_driver.py

Array exchanges use the buffer interface (``Sendrecv``) so amplitudes are
not pickled; scalar collectives use the lowercase pickle-based calls.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from dsv_engine.comm.base import Communicator
from dsv_engine.errors import CommunicationFailure
from dsv_engine.utils.logging_config import get_logger

if TYPE_CHECKING:
    from mpi4py import MPI

log = get_logger(__name__)

EXCHANGE_TAG = 17


class MPICommunicator(Communicator):
    """Wrap an ``mpi4py`` intra-communicator."""

    def __init__(self, comm: "MPI.Comm | None" = None):
        if comm is None:
            from mpi4py import MPI
            comm = MPI.COMM_WORLD
        self._comm = comm
        self._rank = comm.Get_rank()
        self._size = comm.Get_size()

    @classmethod
    def world(cls) -> "MPICommunicator":
        return cls()

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    def sendrecv(self, data: np.ndarray, partner: int) -> np.ndarray:
        from mpi4py import MPI

        send = np.ascontiguousarray(data)
        recv = np.empty_like(send)
        if partner == self._rank:
            recv[...] = send
            return recv
        try:
            self._comm.Sendrecv(send, dest=partner, sendtag=EXCHANGE_TAG,
                                recvbuf=recv, source=partner,
                                recvtag=EXCHANGE_TAG)
        except MPI.Exception as e:
            log.error("rank %d: Sendrecv with %d failed: %s",
                      self._rank, partner, e)
            raise CommunicationFailure(f"MPI Sendrecv failed: {e}",
                                       self._rank, partner) from e
        return recv

    def allgather(self, obj: Any) -> list:
        return self._comm.allgather(obj)

    def bcast(self, obj: Any, root: int = 0) -> Any:
        return self._comm.bcast(obj, root=root)

    def barrier(self) -> None:
        self._comm.Barrier()

    def split(self, color: int, key: int = 0) -> "MPICommunicator":
        return MPICommunicator(self._comm.Split(color, key))
