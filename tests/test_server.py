import json
import queue
import socket
import threading
import time
import urllib.request

import pytest

from replkv.node import Config, Consensus, Node
from replkv.server import Server


class FakeConsensus(Consensus):
    def __init__(self, leader=True, fail_with=None):
        self.leader = leader
        self.fail_with = fail_with
        self._queue = queue.Queue()

    def start(self):
        pass

    def stop(self):
        pass

    def is_leader(self):
        return self.leader

    def propose(self, value):
        if self.fail_with is not None:
            raise self.fail_with
        self._queue.put(value)

    def committed(self):
        return self._queue


def make_server(**kwargs):
    node = Node(Config(node_id=1, consensus=FakeConsensus(**kwargs), http_addrs={1: "127.0.0.1:8080"}))
    node.start()
    return node, Server(node, "127.0.0.1:0")


@pytest.fixture
def server():
    node, srv = make_server()
    yield srv
    node.stop()


def body_of(response):
    return json.loads(response[2])


def put(srv, key, value):
    return srv.dispatch("PUT", f"/kv/{key}", json.dumps({"value": value}).encode())


def test_status_reports_node(server):
    status, headers, body = server.dispatch("GET", "/status", b"")
    assert status == 200
    assert headers["Content-Type"] == "application/json"
    assert json.loads(body) == {"is_leader": True, "node_id": 1, "store_len": 0}
    assert body.endswith(b"\n")


def test_put_creates_then_updates(server):
    first = put(server, "foo", "bar")
    assert first[0] == 201
    assert body_of(first) == {"Created": True}
    second = put(server, "foo", "baz")
    assert second[0] == 200
    assert body_of(second) == {"Created": False}
    got = server.dispatch("GET", "/kv/foo", b"")
    assert got[0] == 200
    assert body_of(got) == {"value": "baz"}
    assert body_of(server.dispatch("GET", "/status", b""))["store_len"] == 1


def test_get_missing_key(server):
    status, _, body = server.dispatch("GET", "/kv/nothing", b"")
    assert status == 404
    assert json.loads(body) == {"Error": "key not found"}


def test_delete_existing_and_missing(server):
    put(server, "k", "v")
    deleted = server.dispatch("DELETE", "/kv/k", b"")
    assert deleted[0] == 200
    assert body_of(deleted) == {"Deleted": True}
    assert server.dispatch("GET", "/kv/k", b"")[0] == 404
    missing = server.dispatch("DELETE", "/kv/k", b"")
    assert missing[0] == 404
    assert body_of(missing) == {"Error": "Key not found"}


def test_put_empty_value_rejected(server):
    status, _, body = server.dispatch("PUT", "/kv/k", b'{"value":""}')
    assert status == 400
    assert json.loads(body) == {"Error": "value must be non-empty"}


@pytest.mark.parametrize("raw", [b"not json", b"", b'{"value":"v","extra":1}', b'{"value":5}', b"[1]"])
def test_put_invalid_json(server, raw):
    status, _, body = server.dispatch("PUT", "/kv/k", raw)
    assert status == 400
    assert json.loads(body)["Error"].startswith("Invalid JSON: ")
    assert server.dispatch("GET", "/kv/k", b"")[0] == 404


def test_put_body_too_large(server):
    raw = json.dumps({"value": "x" * (1 << 14)}).encode()
    status, _, body = server.dispatch("PUT", "/kv/k", raw)
    assert status == 413
    assert json.loads(body) == {"Error": "Request Body too large"}


def test_put_field_name_is_case_insensitive(server):
    status, _, _ = server.dispatch("PUT", "/kv/k", b'{"Value":"v"}')
    assert status == 201
    assert body_of(server.dispatch("GET", "/kv/k", b"")) == {"value": "v"}


def test_key_is_unescaped(server):
    assert put(server, "a%20b", "v")[0] == 201
    assert body_of(server.dispatch("GET", "/kv/a%20b", b"")) == {"value": "v"}
    assert body_of(server.dispatch("GET", "/status", b""))["store_len"] == 1


def test_not_leader():
    node, srv = make_server(leader=False)
    try:
        status, _, body = srv.dispatch("PUT", "/kv/k", b'{"value":"v"}')
        assert status == 503
        assert json.loads(body) == {"Error": "not leader"}
        status, _, body = srv.dispatch("DELETE", "/kv/k", b"")
        assert status == 503
        assert body_of(srv.dispatch("GET", "/status", b""))["is_leader"] is False
    finally:
        node.stop()


def test_timeout_maps_to_gateway_timeout():
    node, srv = make_server(fail_with=TimeoutError("late"))
    try:
        status, _, body = srv.dispatch("PUT", "/kv/k", b'{"value":"v"}')
        assert status == 504
        assert json.loads(body) == {"Error": "apply timeout"}
    finally:
        node.stop()


def test_other_propose_error_is_internal():
    node, srv = make_server(fail_with=RuntimeError("boom"))
    try:
        status, _, body = srv.dispatch("DELETE", "/kv/k", b"")
        assert status == 500
        message = json.loads(body)["Error"]
        assert message.startswith("propose: ")
        assert "boom" in message
    finally:
        node.stop()


@pytest.mark.parametrize("path", ["/", "/kv", "/kv/", "/kv/a/b", "/other"])
def test_unknown_route(server, path):
    status, headers, body = server.dispatch("GET", path, b"")
    assert status == 404
    assert body == b"404 page not found\n"
    assert headers["Content-Type"].startswith("text/plain")


def test_method_not_allowed(server):
    status, headers, _ = server.dispatch("POST", "/kv/k", b"")
    assert status == 405
    assert headers["Allow"] == "DELETE, GET, HEAD, PUT"
    assert server.dispatch("PUT", "/status", b"")[0] == 405


def test_shutdown_before_start_returns():
    node, srv = make_server()
    try:
        srv.shutdown()
        thread = threading.Thread(target=srv.start)
        thread.start()
        thread.join(timeout=2)
        assert not thread.is_alive()
    finally:
        node.stop()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_for(port):
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.2):
                return True
        except OSError:
            time.sleep(0.02)
    return False


def test_serves_over_http():
    node = Node(Config(node_id=1, consensus=FakeConsensus()))
    node.start()
    port = _free_port()
    srv = Server(node, f"127.0.0.1:{port}")
    thread = threading.Thread(target=srv.start, daemon=True)
    thread.start()
    try:
        assert _wait_for(port)
        base = f"http://127.0.0.1:{port}"
        request = urllib.request.Request(
            f"{base}/kv/foo", data=b'{"value":"bar"}', method="PUT",
            headers={"Content-Type": "application/json"},
        )
        with urllib.request.urlopen(request, timeout=5) as response:
            assert response.status == 201
            assert json.loads(response.read()) == {"Created": True}
        with urllib.request.urlopen(f"{base}/kv/foo", timeout=5) as response:
            assert response.status == 200
            assert response.headers["Content-Type"] == "application/json"
            assert json.loads(response.read()) == {"value": "bar"}
    finally:
        srv.shutdown()
        thread.join(timeout=5)
        node.stop()
    assert not thread.is_alive()