# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import stat

import pytest
from packaging.version import Version

from conftest import COMPOSE_FILE, ROOT
from witnet_e2e.docker import ComposeRunner
from witnet_e2e.errors import HarnessError


def _scripted_docker(tmp_path, body):
    fake_bin = tmp_path / "docker"
    fake_bin.write_text("#!/usr/bin/env bash\n" + body)
    fake_bin.chmod(stat.S_IRWXU)
    return ComposeRunner(f"{fake_bin} compose", COMPOSE_FILE, ROOT, env={"PATH": "/usr/bin:/bin"})


def test_commands_target_the_e2e_compose_file(fake_docker):
    fake_bin, log_path = fake_docker
    runner = ComposeRunner(f"{fake_bin} compose", COMPOSE_FILE, ROOT)
    runner.up_node()
    runner.down()

    lines = log_path.read_text().splitlines()
    prefix = f"compose -f {COMPOSE_FILE} --project-directory {ROOT}"
    assert lines == [f"{prefix} up -d node", f"{prefix} down"]
    assert runner.env["PWD"] == str(ROOT)


def test_run_tester_passes_test_name_and_exit_code(fake_docker, monkeypatch):
    fake_bin, log_path = fake_docker
    monkeypatch.setenv("FAKE_TESTER_STATUS", "4")
    runner = ComposeRunner(f"{fake_bin} compose", COMPOSE_FILE, ROOT)
    assert runner.run_tester("sync") == 4
    lines = log_path.read_text().splitlines()
    assert lines[0].endswith("run --rm tester")
    assert lines[1] == "TEST_NAME=sync"


def test_version_gate(fake_docker, monkeypatch):
    fake_bin, _ = fake_docker
    runner = ComposeRunner(f"{fake_bin} compose", COMPOSE_FILE, ROOT)
    assert runner.require_version() == Version("2.24.0")

    monkeypatch.setenv("FAKE_COMPOSE_VERSION", "v1.29.2")
    runner = ComposeRunner(f"{fake_bin} compose", COMPOSE_FILE, ROOT)
    assert runner.version() == Version("1.29.2")
    with pytest.raises(HarnessError, match="older than required"):
        runner.require_version()


def test_config_is_parsed_from_json(tmp_path):
    runner = _scripted_docker(
        tmp_path, """echo '{"services": {"node": {"network_mode": "host"}}}'\n"""
    )
    assert runner.config()["services"]["node"]["network_mode"] == "host"


def test_service_status_handles_both_ps_formats(tmp_path):
    runner = _scripted_docker(
        tmp_path, """echo '[{"Service": "node", "State": "exited"}]'\n"""
    )
    assert runner.service_status("node") == "exited"
    assert runner.service_status("tester") is None

    runner = _scripted_docker(
        tmp_path,
        """echo '{"Service": "tester", "State": "created"}'\n"""
        """echo '{"Service": "node", "State": "running"}'\n""",
    )
    assert runner.service_status("node") == "running"

    runner = _scripted_docker(tmp_path, "exit 0\n")
    assert runner.service_status("node") is None


def test_wait_for_service_reports_exited_node_with_logs(tmp_path):
    runner = _scripted_docker(
        tmp_path,
        """case " $* " in
  *" logs "*) echo "panicked at storage" ;;
  *) echo '{"Service": "node", "State": "exited"}' ;;
esac
""",
    )
    with pytest.raises(HarnessError, match="panicked at storage"):
        runner.wait_for_service("node", retries=3, delay=0)


def test_failures_carry_stderr(tmp_path):
    runner = _scripted_docker(tmp_path, "echo 'no such service: node' >&2\nexit 1\n")
    with pytest.raises(HarnessError, match="no such service: node"):
        runner.up_node()


def test_missing_compose_binary(tmp_path):
    runner = ComposeRunner(str(tmp_path / "no-docker"), COMPOSE_FILE, ROOT)
    with pytest.raises(HarnessError, match="compose binary not found"):
        runner.version()
