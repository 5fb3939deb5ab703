# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Environment handling for the harness: env files and runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from witnet_e2e.compose import DEFAULT_TEST_NAME

DEFAULT_COMPOSE_BIN = "docker compose"
DEFAULT_COMPOSE_FILE = Path("docker") / "compose" / "e2e-debug" / "docker-compose.yaml"
DEFAULT_TESTS_DIR = Path("/tests")
DEFAULT_REQUESTS_DIR = Path("/requests")
DEFAULT_WAIT_RETRIES = 30
DEFAULT_WAIT_DELAY = 2.0


def load_env(path: Path) -> Dict[str, str]:
    env: Dict[str, str] = {}
    path = Path(path)
    if not path.exists():
        return env
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        env[key.strip()] = value.strip()
    return env


def set_env_var(path: Path, key: str, value: str) -> bool:
    """Store ``key`` in an env file, creating it when needed.

    Keys are matched the way :func:`load_env` reads them, so ``KEY = old``
    is rewritten in place. Comments and other lines are kept. Returns
    ``True`` when an existing entry was replaced.
    """
    if not key or "=" in key or "\n" in value:
        raise ValueError(f"cannot store {key!r} in an env file")
    path = Path(path)
    kept: List[str] = []
    replaced = False
    existing = path.read_text().splitlines() if path.exists() else []
    for line in existing:
        stripped = line.strip()
        name, sep, _ = stripped.partition("=")
        if sep and not stripped.startswith("#") and name.strip() == key:
            if not replaced:
                kept.append(f"{key}={value}")
            replaced = True
            continue
        kept.append(line)
    if not replaced:
        kept.append(f"{key}={value}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(kept) + "\n")
    return replaced


def resolve_test_name(env: Mapping[str, str]) -> str:
    return env.get("TEST_NAME") or DEFAULT_TEST_NAME


def resolve_test_script(env: Mapping[str, str]) -> str:
    """Script the tester runs: ``$TEST_NAME.py``, ``example.py`` when unset or empty."""
    return f"{resolve_test_name(env)}.py"


@dataclass(frozen=True)
class HarnessSettings:
    compose_bin: str = DEFAULT_COMPOSE_BIN
    compose_file: Path = DEFAULT_COMPOSE_FILE
    project_dir: Path = Path(".")
    test_name: str = DEFAULT_TEST_NAME
    node_rpc: Optional[str] = None
    tests_dir: Path = DEFAULT_TESTS_DIR
    requests_dir: Path = DEFAULT_REQUESTS_DIR
    wait_retries: int = DEFAULT_WAIT_RETRIES
    wait_delay: float = DEFAULT_WAIT_DELAY

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "HarnessSettings":
        if env is None:
            env = os.environ
        project_dir = Path(env.get("PWD") or os.getcwd())
        compose_file = Path(env.get("COMPOSE_FILE") or DEFAULT_COMPOSE_FILE)
        if not compose_file.is_absolute():
            compose_file = project_dir / compose_file
        return cls(
            compose_bin=env.get("COMPOSE_BIN") or DEFAULT_COMPOSE_BIN,
            compose_file=compose_file,
            project_dir=project_dir,
            test_name=resolve_test_name(env),
            node_rpc=env.get("WITNET_NODE_RPC") or None,
            tests_dir=Path(env.get("TESTS_DIR") or DEFAULT_TESTS_DIR),
            requests_dir=Path(env.get("REQUESTS_DIR") or DEFAULT_REQUESTS_DIR),
            wait_retries=_parse_number(env, "NODE_WAIT_RETRIES", int, DEFAULT_WAIT_RETRIES),
            wait_delay=_parse_number(env, "NODE_WAIT_DELAY", float, DEFAULT_WAIT_DELAY),
        )


def _parse_number(env: Mapping[str, str], key: str, kind, default):
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = kind(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {raw!r}")
    return value
