# replkv

A small replicated key-value store. Each write (`set` or `delete`) becomes a
`Command`, which is encoded as JSON and proposed to a consensus log. When the
log commits an entry, every replica decodes it and applies it to its own
in-memory `Store`. The node that proposed a command waits until its local
replica has applied it, and only then replies.

## Installing

```
pip install .
pip install ".[test]"   # to run the tests
```

## Modules

### `replkv.command`

- `Op` is a string enum with two members, `Op.SET` (`"set"`) and `Op.DELETE` (`"delete"`).
- `Command(request_id, op, key, value="")` is a frozen dataclass. It describes one mutation.
- `encode(command)` returns compact JSON bytes with the fields `request_id`, `op`, `key` and `value`.
  - `value` is left out when it is empty.
  - `<`, `>`, `&`, U+2028 and U+2029 are written as `\u` escapes.
- `decode(data)` accepts bytes or a string and returns a `Command`. It raises:
  - `UnknownOpError` if the op is not recognised.
  - `EmptyKeyError` if the key is empty.
  - `EmptyRequestIDError` if the request id is empty.
  - `CommandError` if the JSON is malformed or a field is not a string. The three errors above are subclasses of `CommandError`, which is itself a subclass of `ValueError`.

### `replkv.store`

- `Store` is a thread-safe map from strings to strings.
  - `get(key)` returns `""` for a missing key.
  - `len(store)` returns the number of keys.
- `Store.apply(cmd)` applies a command and returns an `ApplyResult(op, key, old_value, error)`.
  - `old_value` is the value the key held before the command, or `""` if it held none.
  - `error` is set only when the op is not recognised.

### `replkv.node`

- `Consensus` is an abstract base class that a consensus engine implements:
  - `start()`
  - `stop()`
  - `is_leader()`
  - `propose(value: bytes)`
  - `committed()`, which returns a `queue.Queue` of committed byte values.
- `Config(node_id, consensus, http_addrs={})` configures a `Node`.
- `Node(config)` raises `ValueError` in two cases: when `node_id <= 0`, and when `consensus` is `None`.
- `Node.start()` starts the engine. It also starts a background thread that decodes committed entries and applies them to the store. Entries that fail to decode are skipped.
- `Node.stop()` stops the apply loop and the engine, and wakes every pending proposer. Calling it more than once is safe.
- `Node.propose(cmd, timeout=None)` blocks until the command has been applied on this node, then returns its `ApplyResult`. It raises:
  - `NotLeaderError` on a follower.
  - `ValueError` if the request id is empty.
  - `RuntimeError` if the engine's `propose` fails.
  - `TimeoutError` if the timeout passes first.
  - `NodeStoppedError` if the node is or becomes stopped.
- The node also has `get(key)`, `is_leader()`, `id()` and `store_len()`.
- `leader_http_addr()` returns this node's configured HTTP address when it is the leader. Otherwise it returns `None`.

## Using a node

```python
from replkv.command import Command, Op
from replkv.node import Config, Node

node = Node(Config(node_id=1, consensus=engine, http_addrs={1: "127.0.0.1:8080"}))
node.start()
result = node.propose(Command(request_id="req-1", op=Op.SET, key="foo", value="bar"),
                      timeout=5.0)
print(repr(result.old_value), node.get("foo"))   # '' bar
node.stop()
```

`engine` is any object that implements `Consensus`.

## HTTP API (`replkv.server`)

```python
from replkv.server import Server

server = Server(node, "127.0.0.1:8080")
server.start()      # serves until server.shutdown() is called from another thread
```

`start()` raises `ValueError` if the address has no valid port, and `OSError` if binding fails.

| Method     | Path        | Result |
|------------|-------------|--------|
| GET / HEAD | `/kv/{key}` | `200 {"value": ...}`, or `404 {"Error": "key not found"}` |
| PUT        | `/kv/{key}` | body `{"value": "..."}`. A new key returns `201 {"Created": true}` and an existing key returns `200 {"Created": false}` |
| DELETE     | `/kv/{key}` | `200 {"Deleted": true}`, or `404 {"Error": "Key not found"}` |
| GET / HEAD | `/status`   | `200 {"is_leader": ..., "node_id": ..., "store_len": ...}` |

The key is percent-decoded before use.

PUT and DELETE wait up to five seconds for the command to be applied. On failure they return JSON with an `Error` field:

- `503` if the node is not the leader.
- `504` if the command was not applied in time.
- `500` for any other proposal failure.

A PUT is also rejected in these cases:

- `413` if the body is larger than 16 KiB.
- `400` if the body is not valid JSON or has any field other than `value`.
- `400` if the value is empty.

Unknown paths return a plain-text `404`. A method a route does not accept returns a plain-text `405` with an `Allow` header.

`Server.dispatch(method, path, body=b"")` handles a single request without opening a socket. It returns `(status, headers, body_bytes)`.

## What this package does not include

- **No consensus engine.** You must supply a `Consensus` implementation, for example one that uses a network transport between peers.
- **No launch command.** There is no command-line program that parses peer lists and starts a node. Wire a `Node` and a `Server` together in your own code.
- **No persistence.** The store lives in memory only.