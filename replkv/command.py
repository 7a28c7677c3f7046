"""Replicated state-machine commands and their wire encoding.

Each command is encoded as bytes and proposed as a single consensus value.
Once it is committed, every replica decodes it and applies it to its local store.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

__all__ = [
    "Op",
    "Command",
    "CommandError",
    "UnknownOpError",
    "EmptyKeyError",
    "EmptyRequestIDError",
    "encode",
    "decode",
]


class Op(str, Enum):
    """The kind of mutation a command performs."""

    SET = "set"
    DELETE = "delete"


@dataclass(frozen=True)
class Command:
    """A unit of replicated mutation.

    ``request_id`` ties a committed entry back to the request that proposed it.
    ``value`` is ignored for deletes.
    """

    request_id: str
    op: Union[Op, str]
    key: str
    value: str = ""


class CommandError(ValueError):
    """Raised when encoded command bytes cannot be turned into a valid command."""


class UnknownOpError(CommandError):
    """The encoded op is not a known one."""


class EmptyKeyError(CommandError):
    """The encoded key is empty."""


class EmptyRequestIDError(CommandError):
    """The encoded request id is empty."""


_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _op_text(op: Union[Op, str]) -> str:
    return op.value if isinstance(op, Op) else str(op)


def encode(command: Command) -> bytes:
    """Serialise a command as compact JSON. An empty value is left out."""
    payload: dict[str, str] = {
        "request_id": command.request_id,
        "op": _op_text(command.op),
        "key": command.key,
    }
    if command.value:
        payload["value"] = command.value
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _HTML_ESCAPES.items():
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _string_field(obj: dict[str, Any], name: str) -> str:
    value = obj.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CommandError(f"command: decode: field {name!r} must be a string")
    return value


def decode(data: Union[bytes, str]) -> Command:
    """Parse an encoded command and check its op, key and request id."""
    try:
        obj = json.loads(data)
    except ValueError as exc:
        raise CommandError(f"command: decode: {exc}") from exc
    if obj is None:
        obj = {}
    if not isinstance(obj, dict):
        raise CommandError("command: decode: expected a JSON object")

    request_id = _string_field(obj, "request_id")
    op_text = _string_field(obj, "op")
    key = _string_field(obj, "key")
    value = _string_field(obj, "value")

    try:
        op = Op(op_text)
    except ValueError:
        raise UnknownOpError(f"command: unknown op: {json.dumps(op_text)}") from None
    if not key:
        raise EmptyKeyError("command: empty key")
    if not request_id:
        raise EmptyRequestIDError("command: empty request id")
    return Command(request_id=request_id, op=op, key=key, value=value)