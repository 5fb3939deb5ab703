# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Entrypoint of the ``witnet/python-tester`` image.

The container is started with a single argument, the script to run
(``${TEST_NAME:-example}.py``). Scripts live in the read-only ``/tests``
mount and JSON-RPC request fixtures in ``/requests``. Compose only orders
the start of the two services, so the runner waits for the node's
JSON-RPC port before handing control to the script.
"""

from __future__ import annotations

import argparse
import json
import logging
import runpy
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from witnet_e2e.env import HarnessSettings
from witnet_e2e.errors import HarnessError, NodeUnavailableError, TestScriptError
from witnet_e2e.node_config import DEFAULT_JSONRPC_ADDRESS
from witnet_e2e.rpc import NodeClient

logger = logging.getLogger("witnet_e2e.tester")

EXIT_NODE_UNAVAILABLE = 2


@dataclass
class TestContext:
    node: NodeClient
    requests: Dict[str, Any]
    log: logging.Logger

    __test__ = False


def locate_script(name: str, tests_dir: Path) -> Path:
    if not name:
        raise TestScriptError("no test script given")
    if not name.endswith(".py"):
        name = f"{name}.py"
    root = Path(tests_dir).resolve()
    path = (root / name).resolve()
    try:
        path.relative_to(root)
    except ValueError as exc:
        raise TestScriptError(f"test script {name!r} is outside {root}") from exc
    if not path.is_file():
        raise TestScriptError(f"test script {name!r} not found in {root}")
    return path


def load_requests(requests_dir: Path) -> Dict[str, Any]:
    requests: Dict[str, Any] = {}
    directory = Path(requests_dir)
    if not directory.is_dir():
        logger.warning("requests directory %s does not exist", directory)
        return requests
    for path in sorted(directory.glob("*.json")):
        try:
            requests[path.stem] = json.loads(path.read_text())
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TestScriptError(f"invalid JSON in request fixture {path.name}: {exc}") from exc
    return requests


def run_script(path: Path, context: TestContext) -> int:
    logger.info("running %s with %d request fixture(s)", path.name, len(context.requests))
    init_globals = {"node": context.node, "requests": context.requests, "log": context.log}
    try:
        namespace = runpy.run_path(str(path), init_globals=init_globals, run_name="__e2e_test__")
        entry = namespace.get("main")
        if callable(entry):
            entry(context.node, context.requests)
    except SystemExit as exc:
        return _exit_status(exc.code)
    except AssertionError as exc:
        logger.error("assertion failed in %s: %s", path.name, exc or "(no message)")
        return 1
    except HarnessError as exc:
        logger.error("%s failed: %s", path.name, exc)
        return 1
    logger.info("%s passed", path.name)
    return 0


def _exit_status(code: Any) -> int:
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    logger.error("%s", code)
    return 1


def parse_args(argv: List[str], settings: HarnessSettings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an end-to-end test script against the node.")
    parser.add_argument("script", nargs="?", default=f"{settings.test_name}.py")
    parser.add_argument("--node", default=settings.node_rpc or DEFAULT_JSONRPC_ADDRESS)
    parser.add_argument("--tests-dir", type=Path, default=settings.tests_dir)
    parser.add_argument("--requests-dir", type=Path, default=settings.requests_dir)
    parser.add_argument("--retries", type=int, default=settings.wait_retries)
    parser.add_argument("--delay", type=float, default=settings.wait_delay)
    parser.add_argument("--timeout", type=float, default=10.0)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, settings: Optional[HarnessSettings] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if settings is None:
        settings = HarnessSettings.from_env()
    args = parse_args(sys.argv[1:] if argv is None else argv, settings)
    try:
        script = locate_script(args.script, args.tests_dir)
        requests = load_requests(args.requests_dir)
    except TestScriptError as exc:
        print(f"[tester] {exc}", file=sys.stderr)
        return 1

    with NodeClient(args.node, timeout=args.timeout) as node:
        try:
            node.wait_until_ready(retries=args.retries, delay=args.delay)
        except NodeUnavailableError as exc:
            print(f"[tester] {exc}", file=sys.stderr)
            return EXIT_NODE_UNAVAILABLE
        context = TestContext(node=node, requests=requests, log=logging.getLogger(script.stem))
        return run_script(script, context)


if __name__ == "__main__":  # pragma: no cover - exercised via the container entrypoint
    sys.exit(main())
