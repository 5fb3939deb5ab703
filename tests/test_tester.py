# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import logging

import pytest

from conftest import ROOT, find_free_port
from witnet_e2e import tester
from witnet_e2e.env import HarnessSettings
from witnet_e2e.errors import TestScriptError
from witnet_e2e.rpc import NodeClient

TESTS_DIR = ROOT / "docker" / "python-tester"
REQUESTS_DIR = ROOT / "examples"


def _settings(tmp_path, **overrides):
    values = {
        "tests_dir": tmp_path,
        "requests_dir": tmp_path / "requests",
        "wait_retries": 1,
        "wait_delay": 0,
    }
    values.update(overrides)
    return HarnessSettings(**values)


def test_locate_script_appends_extension(tmp_path):
    script = tmp_path / "sync.py"
    script.write_text("")
    assert tester.locate_script("sync", tmp_path) == script.resolve()
    assert tester.locate_script("sync.py", tmp_path) == script.resolve()


@pytest.mark.parametrize("name", ["", "missing.py", "../outside.py"])
def test_locate_script_rejects_bad_names(tmp_path, name):
    (tmp_path.parent / "outside.py").write_text("")
    with pytest.raises(TestScriptError):
        tester.locate_script(name, tmp_path)


def test_load_requests_reads_repository_examples():
    requests = tester.load_requests(REQUESTS_DIR)
    assert list(requests) == ["get_blockchain", "get_pkh"]
    assert requests["get_pkh"]["method"] == "getPkh"


def test_load_requests_rejects_invalid_json(tmp_path):
    (tmp_path / "broken.json").write_text("{")
    with pytest.raises(TestScriptError, match="broken.json"):
        tester.load_requests(tmp_path)
    assert tester.load_requests(tmp_path / "absent") == {}


@pytest.mark.parametrize(
    "body, expected",
    [
        ("def main(node, requests):\n    assert node.get_pkh()\n", 0),
        ("def main(node, requests):\n    assert node.get_balance() == 5, 'balance'\n", 1),
        ("node.call('getMempool')\n", 1),
        ("import sys\nsys.exit(3)\n", 3),
        ("raise SystemExit('gave up')\n", 1),
        ("log.info('top level only')\n", 0),
    ],
)
def test_run_script_exit_status(tmp_path, fake_node, body, expected):
    script = tmp_path / "case.py"
    script.write_text(body)
    with NodeClient(fake_node.address) as node:
        context = tester.TestContext(node=node, requests={}, log=logging.getLogger("case"))
        assert tester.run_script(script, context) == expected


def test_unexpected_errors_propagate(tmp_path, fake_node):
    script = tmp_path / "broken.py"
    script.write_text("raise KeyError('missing')\n")
    with NodeClient(fake_node.address) as node:
        context = tester.TestContext(node=node, requests={}, log=logging.getLogger("broken"))
        with pytest.raises(KeyError):
            tester.run_script(script, context)


def test_main_runs_shipped_example_against_node(fake_node):
    status = tester.main(
        [
            "example.py",
            "--node",
            fake_node.address,
            "--tests-dir",
            str(TESTS_DIR),
            "--requests-dir",
            str(REQUESTS_DIR),
            "--retries",
            "1",
            "--delay",
            "0",
        ],
        settings=HarnessSettings(),
    )
    assert status == 0
    methods = [method for method, _ in fake_node.calls]
    assert methods[:4] == ["getPkh", "getBlockChain", "getPkh", "getBalance"]
    assert methods[4:] == ["getBlockChain", "getPkh"]


def test_main_uses_test_name_from_settings(tmp_path, fake_node):
    (tmp_path / "sync.py").write_text("def main(node, requests):\n    node.get_pkh()\n")
    settings = _settings(tmp_path, test_name="sync", node_rpc=fake_node.address)
    assert tester.main([], settings=settings) == 0
    assert fake_node.calls == [("getPkh", None)]


def test_main_reports_missing_script(tmp_path, capsys):
    assert tester.main(["nope.py"], settings=_settings(tmp_path)) == 1
    assert "[tester]" in capsys.readouterr().err


def test_main_fails_when_node_never_comes_up(tmp_path, capsys):
    (tmp_path / "example.py").write_text("")
    settings = _settings(tmp_path, node_rpc=f"127.0.0.1:{find_free_port()}")
    assert tester.main([], settings=settings) == tester.EXIT_NODE_UNAVAILABLE
    assert "not reachable" in capsys.readouterr().err


def test_load_requests_rejects_undecodable_fixture(tmp_path):
    (tmp_path / "bad.json").write_bytes(b'{"a": "\xff"}')
    with pytest.raises(TestScriptError, match="bad.json"):
        tester.load_requests(tmp_path)


def test_main_reports_undecodable_fixture(tmp_path, capsys):
    (tmp_path / "example.py").write_text("")
    requests_dir = tmp_path / "requests"
    requests_dir.mkdir()
    (requests_dir / "bad.json").write_bytes(b"\xff\xfe\x00")
    assert tester.main([], settings=_settings(tmp_path)) == 1
    assert "[tester] invalid JSON in request fixture bad.json" in capsys.readouterr().err
