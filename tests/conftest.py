# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import json
import socket
import socketserver
import stat
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
COMPOSE_FILE = ROOT / "docker" / "compose" / "e2e-debug" / "docker-compose.yaml"

FAKE_DOCKER = """#!/usr/bin/env bash
echo "$@" >> "$FAKE_DOCKER_LOG"
case " $* " in
  *" version --short "*)
    echo "${FAKE_COMPOSE_VERSION:-2.24.0}"
    ;;
  *" ps "*)
    echo '{"Service":"node","State":"running"}'
    ;;
  *" up "*)
    exit "${FAKE_UP_STATUS:-0}"
    ;;
  *" down "*)
    exit "${FAKE_DOWN_STATUS:-0}"
    ;;
  *" run "*)
    echo "TEST_NAME=${TEST_NAME:-}" >> "$FAKE_DOCKER_LOG"
    exit "${FAKE_TESTER_STATUS:-0}"
    ;;
esac
exit 0
"""


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class RpcFailure(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


def _make_handler(node):
    class JsonRpcHandler(socketserver.StreamRequestHandler):
        def handle(self):
            for line in self.rfile:
                if not line.strip():
                    continue
                request = json.loads(line)
                node.calls.append((request["method"], request.get("params")))
                if node.raw_reply is not None:
                    self.wfile.write(node.raw_reply + b"\n")
                    self.wfile.flush()
                    continue
                response = {"jsonrpc": "2.0", "id": request.get("id")}
                if node.id_offset:
                    response["id"] = (request.get("id") or 0) + node.id_offset
                handler = node.methods.get(request["method"])
                if handler is None:
                    response["error"] = {"code": -32601, "message": "Method not found"}
                else:
                    try:
                        response["result"] = handler(request.get("params"))
                    except RpcFailure as exc:
                        response["error"] = {"code": exc.code, "message": exc.message}
                self.wfile.write(json.dumps(response).encode() + b"\n")
                self.wfile.flush()

    return JsonRpcHandler


class FakeNode:
    """Line-delimited JSON-RPC server standing in for the node."""

    def __init__(self, methods=None):
        self.methods = dict(methods or {})
        self.calls = []
        self.id_offset = 0
        self.raw_reply = None
        self._server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), _make_handler(self))
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def address(self) -> str:
        host, port = self._server.server_address
        return f"{host}:{port}"

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)


DEFAULT_METHODS = {
    "getPkh": lambda params: "twit1qqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqq",
    "getBlockChain": lambda params: [[0, "00" * 32], [1, "11" * 32]],
    "getBalance": lambda params: 1000,
}


@pytest.fixture
def fake_node():
    with FakeNode(DEFAULT_METHODS) as node:
        yield node


@pytest.fixture
def fake_docker(tmp_path, monkeypatch):
    fake_bin = tmp_path / "docker"
    fake_bin.write_text(FAKE_DOCKER)
    fake_bin.chmod(stat.S_IRWXU)
    log_path = tmp_path / "docker.log"
    monkeypatch.setenv("FAKE_DOCKER_LOG", str(log_path))
    return fake_bin, log_path
