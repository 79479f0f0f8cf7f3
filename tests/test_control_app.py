"""
Control service: start/stop the echo server and run the client over HTTP
"""
import threading
import time

import pytest
import requests
from werkzeug.serving import make_server

from control.app import app


@pytest.fixture(scope="module")
def control():
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    thread.join(timeout=5)


def _get(url: str):
    return requests.get(url, timeout=5).json()


def _wait_for(predicate, timeout: float = 5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        value = predicate()
        if value:
            return value
        time.sleep(0.05)
    raise AssertionError("condition not met in time")


def _wait_bound_port(control: str) -> int:
    return _wait_for(lambda: _get(f"{control}/server")["port"])


def _wait_stopped(control: str):
    _wait_for(lambda: not _get(f"{control}/server")["running"])


class TestHealth:
    def test_health(self, control):
        j = _get(f"{control}/health")
        assert j["status"] == "ok"
        assert j["server_running"] is False


class TestServerEndpoints:
    @pytest.mark.parametrize("body", [{}, {"port": "8080"}, {"port": -1}, {"port": 65536}, {"port": True}])
    def test_rejects_invalid_port(self, control, body):
        r = requests.post(f"{control}/server", json=body, timeout=5)
        assert r.status_code == 400

    def test_stop_when_idle(self, control):
        r = requests.delete(f"{control}/server", timeout=5)
        assert r.status_code == 409

    def test_second_start_conflicts_and_stop_unblocks(self, control):
        requests.delete(f"{control}/log", timeout=5)
        r = requests.post(f"{control}/server", json={"port": 0}, timeout=5)
        assert r.status_code == 202
        port = _wait_bound_port(control)

        r = requests.post(f"{control}/server", json={"port": 0}, timeout=5)
        assert r.status_code == 409
        assert r.json()["port"] == port

        _wait_for(lambda: "Waiting for a client connection..." in _get(f"{control}/log")["messages"])
        r = requests.delete(f"{control}/server", timeout=5)
        assert r.status_code == 200
        _wait_stopped(control)

        messages = _get(f"{control}/log")["messages"]
        assert messages[0] == "Starting server."
        assert messages[-1] == "Server terminated."

    def test_stop_right_after_start(self, control):
        requests.delete(f"{control}/log", timeout=5)
        r = requests.post(f"{control}/server", json={"port": 0}, timeout=5)
        assert r.status_code == 202

        r = requests.delete(f"{control}/server", timeout=5)
        assert r.status_code == 200
        _wait_stopped(control)

        messages = _get(f"{control}/log")["messages"]
        assert messages[-1] == "Server terminated."

        r = requests.post(f"{control}/server", json={"port": 0}, timeout=5)
        assert r.status_code == 202
        _wait_bound_port(control)
        assert requests.delete(f"{control}/server", timeout=5).status_code == 200
        _wait_stopped(control)

    def test_port_in_use_is_logged(self, control):
        import socket
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("0.0.0.0", 0))
            busy.listen(1)
            port = busy.getsockname()[1]

            requests.delete(f"{control}/log", timeout=5)
            r = requests.post(f"{control}/server", json={"port": port}, timeout=5)
            assert r.status_code == 202
            _wait_for(lambda: "Server terminated." in _get(f"{control}/log")["messages"])

        messages = _get(f"{control}/log")["messages"]
        assert messages == [
            "Starting server.",
            "Constructing a new TCP socket...",
            f"Binding to port {port}.",
            "Address already in use",
            "Server terminated.",
        ]


class TestClientEndpoint:
    def test_ping_scenario(self, control):
        requests.delete(f"{control}/log", timeout=5)
        requests.post(f"{control}/server", json={"port": 0}, timeout=5)
        port = _wait_bound_port(control)

        r = requests.post(f"{control}/client",
                          json={"ip": "127.0.0.1", "port": port, "message": "ping"}, timeout=10)
        assert r.status_code == 200
        assert r.json() == {"echo": "ping"}
        _wait_stopped(control)

        messages = _get(f"{control}/log")["messages"]
        assert "Received 4 bytes: ping" in messages
        assert "Echo received: ping" in messages
        # the client handler and the server task log concurrently
        server_lines = [m for m in messages if m in ("Starting server.", "Server terminated.")]
        assert server_lines == ["Starting server.", "Server terminated."]
        assert messages.index("Received 4 bytes: ping") < messages.index("Server terminated.")

    @pytest.mark.parametrize("body", [
        {"port": 7, "message": "x"},
        {"ip": "127.0.0.1", "port": 0, "message": "x"},
        {"ip": "127.0.0.1", "port": 7},
    ])
    def test_rejects_invalid_body(self, control, body):
        r = requests.post(f"{control}/client", json=body, timeout=5)
        assert r.status_code == 400

    def test_refused_is_bad_gateway(self, control):
        import socket
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]

        r = requests.post(f"{control}/client",
                          json={"ip": "127.0.0.1", "port": port, "message": "ping"}, timeout=10)
        assert r.status_code == 502
        assert r.json()["error"] == "Connection refused"
        assert _get(f"{control}/log")["messages"][-1] == "Client terminated."


class TestLogEndpoint:
    def test_clear(self, control):
        r = requests.delete(f"{control}/log", timeout=5)
        assert r.json() == {"messages": []}
        assert _get(f"{control}/log")["messages"] == []
