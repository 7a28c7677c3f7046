"""The in-memory key-value state machine that committed commands are applied to."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from replkv.command import Command, Op


@dataclass(frozen=True)
class ApplyResult:
    """What applying one command did: the key's previous value and any error."""

    op: Op
    key: str
    old_value: str
    error: Optional[Exception] = None


class Store:
    """A thread-safe string map; missing keys read as the empty string."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def apply(self, cmd: Command) -> ApplyResult:
        with self._lock:
            previous = self._data.get(cmd.key, "")
            error = None
            if cmd.op == Op.SET:
                self._data[cmd.key] = cmd.value
            elif cmd.op == Op.DELETE:
                self._data.pop(cmd.key, None)
            else:
                error = ValueError(f"kv-store: unknown op {cmd.op!r}")
            return ApplyResult(cmd.op, cmd.key, previous, error)

    def get(self, key: str) -> str:
        with self._lock:
            return self._data.get(key, "")

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)