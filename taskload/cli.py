"""
描述: TaskLoad 提醒服务命令行入口。
主要功能:
    - serve: 启动 HTTP 服务与提醒调度器
    - dispatch-once: 手动执行一轮提醒分发并输出 JSON 报告
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv
import uvicorn

from taskload.config import Settings, load_settings
from taskload.db.postgres import PostgresReminderStore
from taskload.jobs.cycle import CycleReport
from taskload.jobs.dispatchers.transports import build_transport
from taskload.main import build_cycle, build_store, close_resources, create_app
from taskload.utils.exceptions import TaskLoadError
from taskload.utils.logger import setup_logging


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令行参数。"""
    parser = argparse.ArgumentParser(prog="taskload", description="TaskLoad 提醒分发服务")
    parser.add_argument(
        "action",
        nargs="?",
        default="serve",
        choices=["serve", "dispatch-once"],
        help="执行动作，默认 serve",
    )
    parser.add_argument("--config", default="", help="配置文件路径（默认读取 CONFIG_PATH 或 config.yaml）")
    parser.add_argument("--host", default="", help="serve 时覆盖监听地址")
    parser.add_argument("--port", type=int, default=0, help="serve 时覆盖监听端口")
    return parser.parse_args(argv)


async def _dispatch_once(settings: Settings) -> CycleReport:
    store = build_store(settings)
    transport = build_transport(settings.transport)
    try:
        if isinstance(store, PostgresReminderStore):
            await store.ensure_schema()
        cycle = build_cycle(settings, store, transport)
        return await cycle.run()
    finally:
        await close_resources(store, transport)


def _serve(settings: Settings, host: str, port: int) -> int:
    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """命令行主函数。"""
    load_dotenv()
    args = _parse_args(argv)
    try:
        settings = load_settings(args.config or None)
    except TaskLoadError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    setup_logging(settings.logging)

    if args.action == "dispatch-once":
        try:
            report = asyncio.run(_dispatch_once(settings))
        except TaskLoadError as exc:
            print(json.dumps(exc.to_dict(), ensure_ascii=False), file=sys.stderr)
            return 1
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        return 1 if report.aborted else 0

    return _serve(settings, str(args.host or ""), int(args.port or 0))


if __name__ == "__main__":
    raise SystemExit(main())
