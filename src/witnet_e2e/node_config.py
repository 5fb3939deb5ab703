# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Read the parts of ``witnet.toml`` the harness cares about."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

DEFAULT_SERVER_ADDR = "0.0.0.0:21337"
DEFAULT_JSONRPC_ADDRESS = "127.0.0.1:21338"


@dataclass(frozen=True)
class NodeConfig:
    server_addr: str = DEFAULT_SERVER_ADDR
    jsonrpc_address: str = DEFAULT_JSONRPC_ADDRESS
    jsonrpc_enabled: bool = True
    known_peers: List[str] = field(default_factory=list)

    @property
    def jsonrpc_endpoint(self) -> Tuple[str, int]:
        return parse_socket_addr(self.jsonrpc_address)


def parse_socket_addr(value: str) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    text = value.strip()
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"invalid socket address {value!r}")
        port_text = rest[1:]
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"invalid socket address {value!r}")
    if not host:
        raise ValueError(f"socket address {value!r} has no host")
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"socket address {value!r} has no valid port") from exc
    if not 0 < port < 65536:
        raise ValueError(f"port {port} out of range in {value!r}")
    return host, port


def load_node_config(path: Path) -> NodeConfig:
    path = Path(path)
    if not path.exists():
        return NodeConfig()
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    connections = data.get("connections", {})
    jsonrpc = data.get("jsonrpc", {})
    return NodeConfig(
        server_addr=connections.get("server_addr", DEFAULT_SERVER_ADDR),
        jsonrpc_address=jsonrpc.get("server_address", DEFAULT_JSONRPC_ADDRESS),
        jsonrpc_enabled=jsonrpc.get("enabled", True),
        known_peers=list(connections.get("known_peers", [])),
    )
