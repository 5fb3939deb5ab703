# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""JSON-RPC client for the node.

The node speaks JSON-RPC 2.0 over a plain TCP stream, one JSON document per
line. Both services of the harness run on host networking, so the tester
reaches the node on the loopback address from ``witnet.toml``.
"""

from __future__ import annotations

import itertools
import json
import logging
import socket
import time
from typing import Any, BinaryIO, Dict, Iterable, Iterator, Optional, Tuple, Union

from witnet_e2e.errors import NodeRpcError, NodeUnavailableError
from witnet_e2e.node_config import DEFAULT_JSONRPC_ADDRESS, parse_socket_addr

logger = logging.getLogger(__name__)

Address = Union[str, Tuple[str, int]]


class NodeClient:
    def __init__(self, address: Address = DEFAULT_JSONRPC_ADDRESS, timeout: float = 10.0):
        if isinstance(address, str):
            address = parse_socket_addr(address)
        self.address: Tuple[str, int] = address
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[BinaryIO] = None

    def __enter__(self) -> "NodeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _connect(self) -> None:
        if self._sock is not None:
            return
        host, port = self.address
        try:
            self._sock = socket.create_connection((host, port), timeout=self.timeout)
        except OSError as exc:
            raise NodeUnavailableError(f"cannot reach node at {host}:{port}: {exc}") from exc
        self._reader = self._sock.makefile("rb")
        logger.debug("connected to node JSON-RPC at %s:%s", host, port)

    def _send_line(self, line: bytes) -> Any:
        self._connect()
        assert self._sock is not None and self._reader is not None
        try:
            self._sock.sendall(line.rstrip(b"\n") + b"\n")
            reply = self._reader.readline()
        except OSError as exc:
            self.close()
            raise NodeUnavailableError(f"connection to node lost: {exc}") from exc
        if not reply:
            self.close()
            raise NodeUnavailableError("node closed the connection without replying")
        try:
            return json.loads(reply)
        except ValueError as exc:
            raise NodeRpcError(-32700, f"invalid JSON in node response: {exc}") from exc

    def call(self, method: str, params: Any = None) -> Any:
        request_id = next(self._ids)
        request: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
        if params is not None:
            request["params"] = params
        logger.debug("-> %s", request)
        response = self._send_line(json.dumps(request).encode())
        logger.debug("<- %s", response)
        if not isinstance(response, dict):
            raise NodeRpcError(-32600, f"node reply is not a JSON-RPC object: {response!r}")
        if response.get("id") != request_id:
            raise NodeRpcError(
                -32603,
                f"response id {response.get('id')!r} does not match request id {request_id}",
            )
        error = response.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise NodeRpcError(-32600, f"malformed error member in node reply: {error!r}")
            raise NodeRpcError(error.get("code", 0), error.get("message", ""), error.get("data"))
        return response.get("result")

    def raw(self, lines: Iterable[str]) -> Iterator[Any]:
        """Send each non-blank line verbatim and yield the decoded replies."""
        for line in lines:
            line = line.strip()
            if not line:
                continue
            yield self._send_line(line.encode())

    def get_block(self, block_hash: str) -> Any:
        return self.call("getBlock", [block_hash])

    def get_blockchain(self, epoch: int = 0, limit: int = 100) -> Any:
        return self.call("getBlockChain", [epoch, limit])

    def get_balance(self, pkh: Optional[str] = None) -> Any:
        if pkh is None:
            pkh = self.get_pkh()
        return self.call("getBalance", [pkh])

    def get_pkh(self) -> Any:
        return self.call("getPkh")

    def get_output(self, pointer: str) -> Any:
        transaction_id, sep, index = pointer.rpartition(":")
        if not sep or not transaction_id or not index.isdigit():
            raise ValueError(
                f"output pointer must be <transaction id>:<output index>, got {pointer!r}"
            )
        return self.call("getOutput", [pointer])

    def send_value(self, pkh: str, value: int, fee: int) -> Any:
        if value <= 0:
            raise ValueError("value must be positive")
        if fee < 0:
            raise ValueError("fee must not be negative")
        params = {"vto": [{"pkh": pkh, "value": value}], "fee": fee}
        return self.call("sendValue", params)

    def wait_until_ready(self, retries: int = 30, delay: float = 2.0) -> None:
        host, port = self.address
        for attempt in range(1, retries + 1):
            try:
                with socket.create_connection((host, port), timeout=3):
                    logger.info("node JSON-RPC reachable at %s:%s", host, port)
                    return
            except OSError:
                logger.debug("node not reachable yet (attempt %d/%d)", attempt, retries)
                if attempt < retries:
                    time.sleep(delay)
        raise NodeUnavailableError(f"node on {host}:{port} not reachable")
