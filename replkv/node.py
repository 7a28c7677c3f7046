"""A replica: a consensus participant plus the store its committed commands feed."""

from __future__ import annotations

import abc
import queue
import threading
from dataclasses import dataclass, field
from typing import Optional

from replkv.command import Command, CommandError, decode, encode
from replkv.store import ApplyResult, Store


class Consensus(abc.ABC):
    """The replicated log a node proposes to and reads committed values from."""

    @abc.abstractmethod
    def start(self) -> None: ...

    @abc.abstractmethod
    def stop(self) -> None: ...

    @abc.abstractmethod
    def is_leader(self) -> bool: ...

    @abc.abstractmethod
    def propose(self, value: bytes) -> None: ...

    @abc.abstractmethod
    def committed(self) -> "queue.Queue[bytes]": ...


@dataclass
class Config:
    node_id: int
    consensus: Optional[Consensus]
    http_addrs: dict[int, str] = field(default_factory=dict)


class NotLeaderError(Exception):
    def __init__(self) -> None:
        super().__init__("node is not the leader")


class NodeStoppedError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("node has been stopped")


class Node:
    """Applies committed commands to a local store and answers proposers once applied."""

    def __init__(self, config: Config) -> None:
        if config.node_id <= 0:
            raise ValueError("NodeID must be >0")
        if config.consensus is None:
            raise ValueError("consensus must be set up")
        self._config = config
        self._consensus: Consensus = config.consensus
        self._store = Store()
        self._waiters: dict[str, "queue.Queue[Optional[ApplyResult]]"] = {}
        self._lock = threading.Lock()
        self._done = threading.Event()

    def start(self) -> None:
        self._consensus.start()
        threading.Thread(target=self._apply_loop, daemon=True).start()

    def stop(self) -> None:
        """Halt the apply loop and the consensus participant. Safe to call twice."""
        with self._lock:
            if self._done.is_set():
                return
            self._done.set()
            waiters = list(self._waiters.values())
        for waiter in waiters:
            self._offer(waiter, None)
        self._consensus.stop()

    def is_leader(self) -> bool:
        return self._consensus.is_leader()

    def get(self, key: str) -> str:
        return self._store.get(key)

    def leader_http_addr(self) -> Optional[str]:
        """This node's HTTP address if it leads and has one configured, else None."""
        if self._consensus.is_leader():
            return self._config.http_addrs.get(self._config.node_id)
        return None

    def id(self) -> int:
        return self._config.node_id

    def store_len(self) -> int:
        return len(self._store)

    def propose(self, cmd: Command, timeout: Optional[float] = None) -> ApplyResult:
        """Propose a command and wait until it is applied locally."""
        if not self._consensus.is_leader():
            raise NotLeaderError()
        if not cmd.request_id:
            raise ValueError("missing requestId")

        waiter: "queue.Queue[Optional[ApplyResult]]" = queue.Queue(maxsize=1)
        with self._lock:
            if self._done.is_set():
                raise NodeStoppedError()
            self._waiters[cmd.request_id] = waiter
        try:
            try:
                self._consensus.propose(encode(cmd))
            except Exception as exc:
                raise RuntimeError(f"error while proposing {exc}") from exc
            try:
                result = waiter.get(timeout=timeout)
            except queue.Empty:
                raise TimeoutError("apply timeout") from None
            if result is None:
                raise NodeStoppedError()
            return result
        finally:
            with self._lock:
                self._waiters.pop(cmd.request_id, None)

    @staticmethod
    def _offer(waiter: "queue.Queue[Optional[ApplyResult]]", item: Optional[ApplyResult]) -> None:
        try:
            waiter.put_nowait(item)
        except queue.Full:
            pass

    def _apply_loop(self) -> None:
        committed = self._consensus.committed()
        while not self._done.is_set():
            try:
                cmd = decode(committed.get(timeout=0.05))
            except (queue.Empty, CommandError):
                continue
            result = self._store.apply(cmd)
            with self._lock:
                waiter = self._waiters.get(cmd.request_id)
            if waiter is not None:
                self._offer(waiter, result)