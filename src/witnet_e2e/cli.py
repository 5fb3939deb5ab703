# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""witnet-e2e management CLI."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from witnet_e2e import compose
from witnet_e2e.docker import ComposeRunner
from witnet_e2e.env import HarnessSettings, load_env, resolve_test_script, set_env_var
from witnet_e2e.errors import HarnessError
from witnet_e2e.node_config import load_node_config
from witnet_e2e.rpc import NodeClient

logger = logging.getLogger(__name__)


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="witnet-e2e", description=__doc__)
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("--env-file", type=Path, help="Read extra variables from an env file")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Print the e2e-debug compose file")
    render.add_argument("--output", type=Path)

    check = sub.add_parser("check", help="Validate a compose file")
    check.add_argument("--file", type=Path)
    check.add_argument(
        "--reserve",
        type=int,
        action="append",
        default=[],
        metavar="PORT",
        help="Port used by the test environment that must stay outside published ranges",
    )

    order = sub.add_parser("order", help="Print the service start order")
    order.add_argument("--file", type=Path)

    resolve = sub.add_parser("resolve", help="Print the tester command after interpolation")
    resolve.add_argument("--file", type=Path)
    resolve.add_argument("--test-name")

    select = sub.add_parser("select", help="Save the test to run into the env file")
    select.add_argument("test_name")

    run = sub.add_parser("run", help="Start the node, run the tester and tear down")
    run.add_argument("--test-name")
    run.add_argument("--keep", action="store_true", help="Leave the node running afterwards")

    rpc = sub.add_parser("rpc", help="Send one JSON-RPC call to the node")
    rpc.add_argument("method")
    rpc.add_argument("params", nargs="?", help="JSON encoded params")
    rpc.add_argument("--node")

    raw = sub.add_parser("raw", help="Send raw JSON-RPC requests read from stdin, one per line")
    raw.add_argument("--node")
    return parser.parse_args(argv)


def _load_compose(path: Optional[Path], settings: HarnessSettings) -> compose.ComposeFile:
    return compose.load(path or settings.compose_file)


def _node_address(args: argparse.Namespace, settings: HarnessSettings) -> str:
    if getattr(args, "node", None):
        return args.node
    if settings.node_rpc:
        return settings.node_rpc
    return load_node_config(settings.project_dir / "witnet.toml").jsonrpc_address


def cmd_render(args: argparse.Namespace, settings: HarnessSettings) -> int:
    text = compose.render(compose.e2e_debug_compose())
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text)
    else:
        sys.stdout.write(text)
    return 0


def cmd_check(args: argparse.Namespace, settings: HarnessSettings) -> int:
    definition = _load_compose(args.file, settings)
    problems = compose.validate(definition)
    for name_a, name_b, (low, high) in compose.host_port_conflicts(definition):
        problems.append(f"services {name_a!r} and {name_b!r} both publish host ports {low}-{high}")
    collisions = compose.reserved_port_collisions(definition, args.reserve)
    if collisions:
        problems.append(
            "reserved ports inside a published range: " + ", ".join(map(str, collisions))
        )
    for name in compose.host_network_ignores_ports(definition):
        print(f"note: service {name!r} uses host networking; its published ports are not remapped")
    for problem in problems:
        print(f"error: {problem}")
    if problems:
        return 1
    print(f"ok: {len(definition.services)} services")
    return 0


def cmd_order(args: argparse.Namespace, settings: HarnessSettings) -> int:
    for name in compose.start_order(_load_compose(args.file, settings)):
        print(name)
    return 0


def cmd_resolve(args: argparse.Namespace, settings: HarnessSettings, env: dict) -> int:
    if args.test_name is not None:
        env["TEST_NAME"] = args.test_name
    definition = compose.resolve(_load_compose(args.file, settings), env)
    print(" ".join(definition.service("tester").command))
    return 0


def cmd_select(args: argparse.Namespace, settings: HarnessSettings) -> int:
    if not args.test_name:
        raise ValueError("test name must not be empty")
    path = args.env_file or settings.project_dir / ".env"
    replaced = set_env_var(path, "TEST_NAME", args.test_name)
    action = "updated" if replaced else "added"
    script = resolve_test_script({"TEST_NAME": args.test_name})
    print(f"{path}: TEST_NAME {action}, tester runs {script}")
    return 0


def cmd_run(args: argparse.Namespace, settings: HarnessSettings, env: dict) -> int:
    runner = ComposeRunner(settings.compose_bin, settings.compose_file, settings.project_dir, env)
    runner.require_version()
    try:
        runner.up_node()
        runner.wait_for_service("node", retries=settings.wait_retries, delay=settings.wait_delay)
        with NodeClient(_node_address(args, settings)) as node:
            node.wait_until_ready(retries=settings.wait_retries, delay=settings.wait_delay)
        status = runner.run_tester(args.test_name or settings.test_name)
    finally:
        if not args.keep:
            try:
                runner.down()
            except HarnessError as exc:
                logger.error("teardown failed: %s", exc)
                print(f"[e2e] teardown failed: {exc}", file=sys.stderr)
    if status != 0:
        print(f"[e2e] tester exited with status {status}", file=sys.stderr)
    return status


def cmd_rpc(args: argparse.Namespace, settings: HarnessSettings) -> int:
    params = None
    if args.params:
        try:
            params = json.loads(args.params)
        except json.JSONDecodeError as exc:
            print(f"[e2e] params are not valid JSON: {exc}", file=sys.stderr)
            return 1
    with NodeClient(_node_address(args, settings)) as node:
        result = node.call(args.method, params)
    print(json.dumps(result, indent=2))
    return 0


def cmd_raw(args: argparse.Namespace, settings: HarnessSettings) -> int:
    with NodeClient(_node_address(args, settings)) as node:
        for response in node.raw(sys.stdin):
            print(json.dumps(response))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    env = dict(os.environ)
    if args.env_file:
        env.update(load_env(args.env_file))
    try:
        settings = HarnessSettings.from_env(env)
        if args.command == "render":
            return cmd_render(args, settings)
        if args.command == "check":
            return cmd_check(args, settings)
        if args.command == "order":
            return cmd_order(args, settings)
        if args.command == "resolve":
            return cmd_resolve(args, settings, env)
        if args.command == "select":
            return cmd_select(args, settings)
        if args.command == "run":
            return cmd_run(args, settings, env)
        if args.command == "rpc":
            return cmd_rpc(args, settings)
        return cmd_raw(args, settings)
    except (HarnessError, ValueError) as exc:
        print(f"[e2e] {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
