# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Drive the e2e-debug harness through the ``docker compose`` CLI."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from packaging.version import InvalidVersion, Version

from witnet_e2e.errors import HarnessError

logger = logging.getLogger(__name__)

MINIMUM_COMPOSE_VERSION = Version("2.0.0")


class ComposeRunner:
    def __init__(
        self,
        compose_bin: str,
        compose_file: Path,
        project_dir: Path,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.compose_bin = compose_bin.split()
        self.compose_file = Path(compose_file)
        self.project_dir = Path(project_dir)
        base_env = dict(os.environ if env is None else env)
        # The compose file mounts paths relative to $PWD.
        base_env["PWD"] = str(self.project_dir)
        self.env = base_env

    def _base(self) -> List[str]:
        return self.compose_bin + [
            "-f",
            str(self.compose_file),
            "--project-directory",
            str(self.project_dir),
        ]

    def _run(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        capture: bool = True,
    ) -> subprocess.CompletedProcess:
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=self.project_dir,
                env=env or self.env,
                capture_output=capture,
                text=True,
            )
        except FileNotFoundError as exc:
            raise HarnessError(f"compose binary not found: {cmd[0]}") from exc
        return result

    def _check(self, cmd: List[str]) -> str:
        result = self._run(cmd)
        if result.returncode != 0:
            raise HarnessError(
                f"{' '.join(cmd)} failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}"
            )
        return result.stdout

    def version(self) -> Version:
        output = self._check(self.compose_bin + ["version", "--short"]).strip()
        try:
            return Version(output.lstrip("vV"))
        except InvalidVersion as exc:
            raise HarnessError(f"cannot parse compose version {output!r}") from exc

    def require_version(self, minimum: Version = MINIMUM_COMPOSE_VERSION) -> Version:
        current = self.version()
        if current < minimum:
            raise HarnessError(f"docker compose {current} is older than required {minimum}")
        return current

    def config(self) -> Dict[str, Any]:
        output = self._check(self._base() + ["config", "--format", "json"])
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise HarnessError(f"compose config returned invalid JSON: {exc}") from exc

    def up_node(self) -> None:
        self._check(self._base() + ["up", "-d", "node"])

    def run_tester(self, test_name: Optional[str] = None) -> int:
        env = dict(self.env)
        if test_name:
            env["TEST_NAME"] = test_name
        cmd = self._base() + ["run", "--rm", "tester"]
        logger.info("running tester (%s)", env.get("TEST_NAME") or "example")
        return self._run(cmd, env=env, capture=False).returncode

    def down(self) -> None:
        self._check(self._base() + ["down"])

    def logs(self, service: str) -> str:
        return self._check(self._base() + ["logs", "--no-color", service])

    def service_status(self, service: str) -> Optional[str]:
        output = self._check(self._base() + ["ps", "--all", "--format", "json", service]).strip()
        if not output:
            return None
        # Older compose releases print one array, newer ones one object per line.
        if output.startswith("["):
            entries = json.loads(output)
        else:
            entries = [json.loads(line) for line in output.splitlines() if line.strip()]
        for entry in entries:
            if entry.get("Service") == service:
                return entry.get("State")
        return None

    def wait_for_service(self, service: str, retries: int = 60, delay: float = 2.0) -> None:
        last_status = None
        for _ in range(retries):
            last_status = self.service_status(service)
            if last_status == "running":
                return
            if last_status == "exited":
                raise HarnessError(
                    f"service {service} exited; recent logs:\n{self.logs(service)}"
                )
            time.sleep(delay)
        raise HarnessError(f"service {service} failed to reach running state (last {last_status})")
