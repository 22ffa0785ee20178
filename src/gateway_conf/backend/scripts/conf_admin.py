# src/gateway_conf/backend/scripts/conf_admin.py

"""
[职责] conf_admin：configs 表的运维 CLI（建表、原始 KV 读写、节点路由组维护、reorg 版本查看/递增）。
[边界] 不启动网关；仅通过 ConfStore 读写配置；每次执行输出 JSON-safe 结果摘要。
[上游关系] 本地开发/部署脚本调用（console script: gateway-conf）。
[下游关系] 网关各子系统在下一次轮询时通过 checksums 感知变更。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from gateway_conf.backend.conf.fingerprint import fingerprint_hex
from gateway_conf.backend.db.engine import create_engine, create_sessionmaker, drop_db, init_db
from gateway_conf.backend.schemas.conf import NodeRouteGroup
from gateway_conf.backend.services.conf_store import ConfStore
from gateway_conf.backend.utils.errors import DomainError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gateway-conf", description="Manage gateway dynamic configs.")
    parser.add_argument("--db-url", dest="db_url", default=None)  # docstring: 显式 DB 连接串
    parser.add_argument("--json", action="store_true")  # docstring: 仅输出 JSON 结果

    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="create the configs table")
    p_init.add_argument("--drop", action="store_true")  # docstring: 先 drop 再 create

    p_get = sub.add_parser("get", help="load raw values by full name")
    p_get.add_argument("names", nargs="+")

    p_set = sub.add_parser("set", help="upsert a raw value")
    p_set.add_argument("name")
    p_set.add_argument("value")

    p_del = sub.add_parser("delete", help="delete a raw config row")
    p_del.add_argument("name")

    p_list = sub.add_parser("list", help="list rows whose name starts with PREFIX")
    p_list.add_argument("prefix")

    sub.add_parser("reorg-version", help="show the reorg version")
    sub.add_parser("reorg-bump", help="atomically increment the reorg version")

    p_route_set = sub.add_parser("route-set", help="upsert a node route group")
    p_route_set.add_argument("group")
    p_route_set.add_argument("nodes", nargs="+")

    p_route_del = sub.add_parser("route-del", help="delete a node route group")
    p_route_del.add_argument("group")

    p_routes = sub.add_parser("routes", help="list node route groups")
    p_routes.add_argument("groups", nargs="*")
    return parser


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return _build_parser().parse_args(list(argv) if argv is not None else None)


async def _dispatch(store: ConfStore, args: argparse.Namespace) -> Dict[str, Any]:
    cmd = args.command
    if cmd == "get":
        return {"values": await store.load_config(*args.names)}
    if cmd == "set":
        await store.store_config(args.name, args.value)
        return {"updated": True}
    if cmd == "delete":
        return {"existed": await store.delete_config(args.name)}
    if cmd == "list":
        rows = await store.load_configs_by_prefix(args.prefix)
        return {
            "rows": [
                {"id": r.id, "name": r.name, "checksum": fingerprint_hex(r.value), "updated_at": r.updated_at}
                for r in rows
            ]
        }
    if cmd == "reorg-version":
        return {"version": await store.get_reorg_version()}
    if cmd == "reorg-bump":
        return {"version": await store.bump_reorg_version()}
    if cmd == "route-set":
        grp = await store.store_node_route_group(NodeRouteGroup(name=args.group, nodes=list(args.nodes)))
        return {"group": {"id": grp.id, "name": grp.name, "nodes": grp.nodes}}
    if cmd == "route-del":
        return {"existed": await store.delete_node_route_group(args.group)}
    if cmd == "routes":
        snapshot = await store.load_node_route_groups(*args.groups)
        return {
            "groups": {
                g.name: {"id": g.id, "nodes": g.nodes, "checksum": snapshot.checksums[g.id].hex()}
                for g in snapshot.items.values()
            }
        }
    raise ValueError(f"unknown command: {cmd}")


async def _run_async(*, db_url: Optional[str], args: argparse.Namespace) -> Dict[str, Any]:
    start_ms = time.perf_counter() * 1000.0
    engine = create_engine(url=db_url)
    result: Dict[str, Any] = {
        "ok": True,
        "command": args.command,
        "db_url": engine.url.render_as_string(hide_password=True),
        "duration_ms": 0.0,
        "error": None,
    }
    try:
        if args.command == "init-db":
            if args.drop:
                await drop_db(engine=engine)
            await init_db(engine=engine)
            result["created"] = True
        else:
            store = ConfStore(create_sessionmaker(engine))
            result.update(await _dispatch(store, args))
    except DomainError as exc:
        result["ok"] = False
        result["error"] = exc.to_dict()
    except PydanticValidationError as exc:
        result["ok"] = False
        result["error"] = {
            "code": "validation_error",
            "message": "invalid input",
            "detail": {"error_count": exc.error_count()},
        }  # docstring: CLI 入参构造模型失败（如节点 URL 非法）
    except Exception as exc:
        result["ok"] = False
        result["error"] = {"code": "internal_error", "message": f"{exc.__class__.__name__}: {exc}", "detail": {}}
    finally:
        await engine.dispose()
        result["duration_ms"] = round(time.perf_counter() * 1000.0 - start_ms, 2)
    return result


def _print_summary(*, result: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(result, ensure_ascii=True, default=str))
        return
    status = "ok" if result.get("ok") else "failed"
    print(f"[gateway-conf] command={result.get('command')} status={status}")
    print(f"[gateway-conf] db_url={result.get('db_url')}")
    for key, value in result.items():
        if key in ("ok", "command", "db_url", "duration_ms", "error"):
            continue
        print(f"[gateway-conf] {key}={json.dumps(value, ensure_ascii=True, default=str)}")
    if result.get("error"):
        print(f"[gateway-conf] error={result.get('error')}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    result = asyncio.run(_run_async(db_url=args.db_url, args=args))
    _print_summary(result=result, as_json=bool(args.json))
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
