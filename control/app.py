import os
import logging
import threading
from typing import List, Optional

from flask import Flask, request, jsonify

from tcp_echo.echo_client import start_client
from tcp_echo.echo_server import EchoServer
from tcp_echo.errors import EchoIOError

app = Flask(__name__)

log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO),
                    format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("control")

HOST = os.environ.get("HOST", "0.0.0.0")  # nosec B104 - control service is reached from outside the host
PORT = int(os.environ.get("PORT", "8000"))
LOG_LIMIT = int(os.environ.get("LOG_LIMIT", "1000"))

# Status lines from the echo core, oldest first
LOG_MESSAGES: List[str] = []
LOG_LOCK = threading.Lock()

SERVER_LOCK = threading.Lock()
SERVER: Optional[EchoServer] = None
SERVER_THREAD: Optional[threading.Thread] = None


def log_message(text: str):
    with LOG_LOCK:
        LOG_MESSAGES.append(text)
        if len(LOG_MESSAGES) > LOG_LIMIT:
            del LOG_MESSAGES[:len(LOG_MESSAGES) - LOG_LIMIT]
    logger.info("%s", text)


def _parse_port(value, allow_zero: bool) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    low = 0 if allow_zero else 1
    if value < low or value > 65535:
        return None
    return value


def server_task(server: EchoServer, port: int):
    log_message("Starting server.")
    try:
        server.open(port)
        server.serve()
    except EchoIOError as e:
        log_message(str(e))
    finally:
        log_message("Server terminated.")


def server_running() -> bool:
    return SERVER_THREAD is not None and SERVER_THREAD.is_alive()


@app.post("/server")
def start_server_task():
    global SERVER, SERVER_THREAD
    data = request.get_json(silent=True) or {}
    port = _parse_port(data.get("port"), allow_zero=True)
    if port is None:
        return jsonify({"error": "Expected JSON with integer field 'port' in [0, 65535]"}), 400

    with SERVER_LOCK:
        if server_running():
            return jsonify({"error": "Server already running", "port": SERVER.port}), 409

        SERVER = EchoServer(log_message)
        SERVER_THREAD = threading.Thread(target=server_task, args=(SERVER, port), daemon=True)
        SERVER_THREAD.start()

    logger.info("Server task started for port %d", port)
    return jsonify({"status": "starting", "port": port}), 202


@app.get("/server")
def server_status():
    with SERVER_LOCK:
        running = server_running()
        port = SERVER.port if SERVER is not None and running else None
    return jsonify({"running": running, "port": port})


@app.delete("/server")
def stop_server_task():
    with SERVER_LOCK:
        if not server_running():
            return jsonify({"error": "Server not running"}), 409
        server = SERVER

    server.abort()
    logger.info("Server task asked to stop")
    return jsonify({"status": "stopping"})


@app.post("/client")
def run_client():
    data = request.get_json(silent=True) or {}
    ip = data.get("ip")
    message = data.get("message")
    port = _parse_port(data.get("port"), allow_zero=False)
    if not isinstance(ip, str) or not ip or not isinstance(message, str) or port is None:
        return jsonify({"error": "Expected JSON with string 'ip', integer 'port' and string 'message'"}), 400

    log_message("Starting client.")
    try:
        echo = start_client(ip, port, message, log_message)
    except EchoIOError as e:
        log_message(str(e))
        return jsonify({"error": str(e)}), 502
    finally:
        log_message("Client terminated.")

    return jsonify({"echo": echo.decode("utf-8", errors="replace")})


@app.get("/log")
def list_log():
    with LOG_LOCK:
        messages = list(LOG_MESSAGES)
    return jsonify({"messages": messages})


@app.delete("/log")
def clear_log():
    with LOG_LOCK:
        LOG_MESSAGES.clear()
    return jsonify({"messages": []})


@app.get("/health")
def health():
    with LOG_LOCK:
        count = len(LOG_MESSAGES)
    return jsonify({"status": "ok", "server_running": server_running(), "log_count": count})


if __name__ == "__main__":
    app.run(host=HOST, port=PORT)  # nosec B104 - control service is reached from outside the host
