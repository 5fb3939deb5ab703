# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Exception hierarchy shared by the harness modules."""

from __future__ import annotations

from typing import Any, Optional


class HarnessError(RuntimeError):
    """Base class for every failure raised by the harness tooling."""


class ComposeError(HarnessError, ValueError):
    """A Compose definition could not be parsed, resolved or ordered."""


class NodeUnavailableError(HarnessError):
    """The node's JSON-RPC endpoint could not be reached."""


class NodeRpcError(HarnessError):
    """The node answered a JSON-RPC call with an error object."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class TestScriptError(HarnessError):
    """A tester script or request fixture could not be loaded."""

    __test__ = False  # keep pytest from collecting it
