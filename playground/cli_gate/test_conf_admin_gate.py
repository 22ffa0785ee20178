# playground/cli_gate/test_conf_admin_gate.py

"""
[职责] cli gate：验证 gateway-conf 运维 CLI 的端到端行为（init-db / set / get / routes / reorg）。
[边界] 使用临时 sqlite 文件；只断言 --json 输出合同。
[上游关系] 依赖 scripts/conf_admin.py 与 ConfStore。
[下游关系] 部署脚本依赖稳定的 JSON 输出字段（ok/error/...）。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from gateway_conf.backend.scripts import conf_admin


pytestmark = pytest.mark.cli_gate


def _run(capsys, db_url: str, *argv: str) -> Dict[str, Any]:
    code = conf_admin.main(["--db-url", db_url, "--json", *argv])
    out = capsys.readouterr().out.strip().splitlines()
    payload = json.loads(out[-1])
    assert (code == 0) == bool(payload["ok"])
    return payload


def test_cli_end_to_end(tmp_path, capsys) -> None:
    db_url = f"sqlite+aiosqlite:///{(tmp_path / 'cli_gate.db').as_posix()}"

    assert _run(capsys, db_url, "init-db")["created"] is True

    assert _run(capsys, db_url, "set", "acl.allowlist.fluent", '{"enabled":true}')["updated"] is True
    got = _run(capsys, db_url, "get", "acl.allowlist.fluent", "missing")
    assert got["values"] == {"acl.allowlist.fluent": '{"enabled":true}'}

    listed: List[Dict[str, Any]] = _run(capsys, db_url, "list", "acl.")["rows"]
    assert [r["name"] for r in listed] == ["acl.allowlist.fluent"]
    assert len(listed[0]["checksum"]) == 32

    grp = _run(capsys, db_url, "route-set", "vip", "http://n1:8545", "http://n2:8545")["group"]
    assert grp["nodes"] == ["http://n1:8545", "http://n2:8545"]
    routes = _run(capsys, db_url, "routes")["groups"]
    assert routes["vip"]["id"] == grp["id"]
    assert _run(capsys, db_url, "routes", "other")["groups"] == {}

    assert _run(capsys, db_url, "reorg-version")["version"] == 0
    assert _run(capsys, db_url, "reorg-bump")["version"] == 1
    assert _run(capsys, db_url, "reorg-bump")["version"] == 2
    assert _run(capsys, db_url, "reorg-version")["version"] == 2

    assert _run(capsys, db_url, "route-del", "vip")["existed"] is True
    assert _run(capsys, db_url, "delete", "acl.allowlist.fluent")["existed"] is True
    assert _run(capsys, db_url, "delete", "acl.allowlist.fluent")["existed"] is False


def test_cli_reports_domain_errors(tmp_path, capsys) -> None:
    db_url = f"sqlite+aiosqlite:///{(tmp_path / 'cli_errors.db').as_posix()}"
    _run(capsys, db_url, "init-db")

    _run(capsys, db_url, "set", "reorg.version", "not-a-number")
    failed = _run(capsys, db_url, "reorg-version")
    assert failed["ok"] is False
    assert failed["error"]["code"] == "validation_error"

    bad_route = _run(capsys, db_url, "route-set", "vip", "not-a-url")
    assert bad_route["ok"] is False
    assert bad_route["error"]["code"] == "validation_error"
