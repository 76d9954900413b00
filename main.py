"""CLI entrypoint for insight tasks: serve the API or drive tasks directly."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, List, Optional

from models import AccountCandidate, ProviderConfig, SearchSpeed
from utils.logger import configure_logging
from webapp.runtime import Runtime


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _gateways(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WeChat insight task CLI")
    parser.add_argument("--db", default=None, help="SQLite path for direct commands (default: STORAGE_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3001)

    login = sub.add_parser("login")
    login.add_argument("--token", required=True)
    login.add_argument("--cookie", required=True)
    login.add_argument("--ttl", type=int, default=None)

    create = sub.add_parser("create")
    create.add_argument("--prompt", required=True)
    create.add_argument("--target", type=int, default=30)
    create.add_argument("--keyword-provider", default="gemini")
    create.add_argument("--reasoning-provider", default="gemini")
    create.add_argument("--embedding-provider", default="gemini")
    create.add_argument("--speed", default="medium")
    create.add_argument("--fakeid", default=None)
    create.add_argument("--nickname", default=None)

    sub.add_parser("list")

    show = sub.add_parser("show")
    show.add_argument("--task-id", required=True)

    cancel = sub.add_parser("cancel")
    cancel.add_argument("--task-id", required=True)

    delete = sub.add_parser("delete")
    delete.add_argument("--task-id", required=True)

    export = sub.add_parser("export")
    export.add_argument("--task-id", required=True)
    export.add_argument("--target-dir", required=True)
    export.add_argument("--format", choices=["markdown", "pdf"], default="markdown")
    export.add_argument("--gateways", default=None, help="Comma separated gateway URLs")
    export.add_argument("--authorization", default=None)

    prefetch = sub.add_parser("prefetch")
    prefetch.add_argument("--task-id", required=True)
    prefetch.add_argument("--gateways", default=None, help="Comma separated gateway URLs")
    prefetch.add_argument("--authorization", default=None)

    return parser


async def _run(args: argparse.Namespace) -> None:
    runtime = Runtime.from_settings(args.db)
    manager = runtime.manager
    try:
        if args.command == "login":
            session = await manager.save_session(args.token, args.cookie, args.ttl)
            _print({"success": True, "expires_at": session.expires_at})
            return

        if args.command == "create":
            config = ProviderConfig(
                keyword_provider=args.keyword_provider,
                reasoning_provider=args.reasoning_provider,
                embedding_provider=args.embedding_provider,
                search_speed=SearchSpeed.parse(args.speed),
            )
            account = None
            if args.fakeid and args.nickname:
                account = AccountCandidate(external_id=args.fakeid, display_name=args.nickname)
            task_id = await manager.create_task(args.prompt, args.target, config, account)
            await manager.wait_for(task_id)
            detail = await manager.get_task(task_id)
            _print(detail.task.model_dump(mode="json"))
            return

        if args.command == "list":
            tasks = await manager.list_tasks()
            _print([task.model_dump(mode="json") for task in tasks])
            return

        if args.command == "show":
            detail = await manager.get_task(args.task_id)
            _print(detail.model_dump(mode="json"))
            return

        if args.command == "cancel":
            task = await manager.cancel_task(args.task_id)
            _print(task.model_dump(mode="json"))
            return

        if args.command == "delete":
            _print({"success": await manager.delete_task(args.task_id)})
            return

        if args.command == "export":
            result = await manager.export_task(
                args.task_id,
                args.target_dir,
                args.format,
                _gateways(args.gateways),
                args.authorization,
            )
            _print(result.model_dump(mode="json"))
            return

        if args.command == "prefetch":
            result = await manager.prefetch_task(args.task_id, _gateways(args.gateways), args.authorization)
            _print(result.model_dump(mode="json"))
            return
    finally:
        await runtime.close()


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:app", host=args.host, port=args.port)
        return

    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
