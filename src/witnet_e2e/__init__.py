# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Tooling for the witnet end-to-end debug harness.

The harness itself is a two-service Compose file (a debug node and a
Python tester). This package models that file, resolves it the way
Compose does, drives it through the ``docker compose`` CLI and provides
the tester entrypoint together with a JSON-RPC client for the node.
"""

from witnet_e2e.errors import (
    ComposeError,
    HarnessError,
    NodeRpcError,
    NodeUnavailableError,
    TestScriptError,
)

__all__: list[str] = [
    "ComposeError",
    "HarnessError",
    "NodeRpcError",
    "NodeUnavailableError",
    "TestScriptError",
]

__version__ = "0.1.0"
