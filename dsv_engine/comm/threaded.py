"""In-process transport: one thread per worker rank.

Architecture:
  ThreadWorld         - shared by all ranks of one communicator: a barrier,
                        a slot per rank for collectives, and one FIFO
                        mailbox per ordered (source, destination) pair.
  ThreadCommunicator  - a rank's view of a world.

Collectives write into the slot array between two barrier waits, so a
slot is never overwritten while another rank still reads it.  Pairwise
exchanges never touch the barrier; only the two partners rendezvous.

Objects passed to collectives are shared by reference between threads;
arrays passed to ``sendrecv`` are copied.
"""
from __future__ import annotations

import queue
import threading
import time
from typing import Any, Optional

import numpy as np

from dsv_engine.comm.base import Communicator
from dsv_engine.errors import CommunicationFailure
from dsv_engine.utils.logging_config import get_logger

log = get_logger(__name__)

_POLL = 0.05  # seconds between abort checks while blocked on a mailbox


class ThreadWorld:
    """Shared state of one thread communicator (the world or a split)."""

    def __init__(self, size: int, timeout: Optional[float] = None,
                 parent: "ThreadWorld | None" = None):
        if size < 1:
            raise ValueError(f"world size must be >= 1, got {size}")
        self.size = size
        self.timeout = timeout
        self.parent = parent
        self._barrier = threading.Barrier(size)
        self._slots: list[Any] = [None] * size
        self._lock = threading.Lock()
        self._mailboxes: dict[tuple[int, int], queue.Queue] = {}
        self._children: dict[tuple[int, int], ThreadWorld] = {}
        self._aborted = threading.Event()

    # ── lifecycle ────────────────────────────────────────────────────

    def communicator(self, rank: int) -> "ThreadCommunicator":
        if not 0 <= rank < self.size:
            raise ValueError(f"rank {rank} out of range [0, {self.size})")
        return ThreadCommunicator(self, rank)

    def communicators(self) -> list["ThreadCommunicator"]:
        return [self.communicator(r) for r in range(self.size)]

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def abort(self) -> None:
        """Fail every pending and future operation in this world and its splits."""
        if self._aborted.is_set():
            return
        self._aborted.set()
        self._barrier.abort()
        with self._lock:
            children = list(self._children.values())
        for child in children:
            child.abort()

    # ── internals ────────────────────────────────────────────────────

    def _mailbox(self, src: int, dst: int) -> queue.Queue:
        with self._lock:
            box = self._mailboxes.get((src, dst))
            if box is None:
                box = self._mailboxes[(src, dst)] = queue.Queue()
            return box

    def _child(self, key: tuple[int, int], size: int) -> "ThreadWorld":
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = ThreadWorld(size, timeout=self.timeout, parent=self)
                if self._aborted.is_set():
                    child._aborted.set()
                    child._barrier.abort()
                self._children[key] = child
            return child


class ThreadCommunicator(Communicator):
    """One rank of a :class:`ThreadWorld`."""

    def __init__(self, world: ThreadWorld, rank: int):
        self._world = world
        self._rank = rank
        self._split_seq = 0

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._world.size

    @property
    def world(self) -> ThreadWorld:
        return self._world

    # ── point-to-point ───────────────────────────────────────────────

    def sendrecv(self, data: np.ndarray, partner: int) -> np.ndarray:
        if not 0 <= partner < self.size:
            raise ValueError(f"partner {partner} out of range [0, {self.size})")
        if partner == self._rank:
            return np.array(data, copy=True)
        self._check_alive(partner)
        self._world._mailbox(self._rank, partner).put(np.array(data, copy=True))
        return self._receive(partner)

    def _receive(self, partner: int) -> np.ndarray:
        box = self._world._mailbox(partner, self._rank)
        timeout = self._world.timeout
        start = time.monotonic()
        while True:
            try:
                return box.get(timeout=_POLL)
            except queue.Empty:
                pass
            self._check_alive(partner)
            if timeout is not None and time.monotonic() - start > timeout:
                log.error("rank %d: no data from partner %d after %.1fs",
                          self._rank, partner, timeout)
                raise CommunicationFailure("exchange timed out",
                                           self._rank, partner)

    def _check_alive(self, partner: int | None = None) -> None:
        if self._world.aborted:
            raise CommunicationFailure("worker world aborted", self._rank, partner)

    # ── collectives ──────────────────────────────────────────────────

    def _wait(self) -> None:
        try:
            self._world._barrier.wait(timeout=self._world.timeout)
        except threading.BrokenBarrierError:
            if not self._world.aborted:
                # a timed-out wait breaks the barrier for every rank
                self._world.abort()
            raise CommunicationFailure("collective aborted", self._rank) from None

    def allgather(self, obj: Any) -> list:
        self._check_alive()
        self._world._slots[self._rank] = obj
        self._wait()
        out = list(self._world._slots)
        self._wait()
        return out

    def bcast(self, obj: Any, root: int = 0) -> Any:
        return self.allgather(obj if self._rank == root else None)[root]

    def barrier(self) -> None:
        self._check_alive()
        self._wait()

    def split(self, color: int, key: int = 0) -> "ThreadCommunicator":
        seq = self._split_seq
        self._split_seq += 1
        entries = self.allgather((color, key, self._rank))
        members = sorted((k, r) for c, k, r in entries if c == color)
        new_rank = members.index((key, self._rank))
        child = self._world._child((seq, color), len(members))
        log.debug("rank %d: split color=%d -> rank %d of %d",
                  self._rank, color, new_rank, len(members))
        return ThreadCommunicator(child, new_rank)
