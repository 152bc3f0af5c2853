"""
OmniStudio command-line tool.

Usage:
    # Log in and print the token to export as STUDIO_TOKEN
    omnistudio login alice@example.com

    # Reconcile server chats into the local histories
    omnistudio sync --json

    # List the cached chats of a tool
    omnistudio history image

    # Run one generation to completion
    omnistudio generate video "a red fox running through snow"

    # Run the sidecar service
    omnistudio serve --port 8020
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys
from datetime import datetime
from typing import List, Optional

from .client import StudioClient
from .config import settings
from .errors import StudioError
from .history import ChatHistoryManager
from .models import TOOLS
from . import workflows

logger = logging.getLogger("omnistudio.cli")


def _client(args: argparse.Namespace) -> StudioClient:
    return StudioClient(base_url=args.api_url, token=args.token)


def _fmt_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


async def cmd_login(args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    client = _client(args)
    await client.login(args.identifier, password)
    print(client.token)
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    server_chats, results = await workflows.sync_chats(_client(args), ChatHistoryManager())
    if args.json:
        print(json.dumps({
            "server_chats": len(server_chats),
            "tools": {
                tool: {
                    "added": r.added,
                    "linked": r.linked,
                    "mutated": r.mutated,
                    "count": len(r.chats),
                }
                for tool, r in results.items()
            },
        }, indent=2))
        return 0

    print(f"Server chats: {len(server_chats)}")
    for tool, r in sorted(results.items()):
        state = "updated" if r.mutated else "unchanged"
        print(f"  {tool:<12} {len(r.added):>3} added  {len(r.linked):>3} linked  ({state}, {len(r.chats)} cached)")
    return 0


async def cmd_history(args: argparse.Namespace) -> int:
    chats = ChatHistoryManager().get_history(args.tool)
    if args.json:
        print(json.dumps([c.to_store() for c in chats], indent=2))
        return 0
    if not chats:
        print(f"No {args.tool} chats cached.")
        return 0
    for chat in chats:
        server = chat.server_id or "-"
        print(f"{_fmt_time(chat.sort_time())}  {chat.id:<32}  {server:<24}  {chat.title}")
    return 0


async def cmd_generate(args: argparse.Namespace) -> int:
    options = args.options or {}
    outcome = await workflows.run_generation(
        _client(args),
        ChatHistoryManager(),
        args.tool,
        args.prompt,
        options=options,
        chat_id=args.chat_id,
        timeout_s=args.timeout,
    )
    print(outcome.url)
    logger.info("Result stored in %s chat %s (job %s)", args.tool, outcome.chat.id, outcome.job_id)
    return 0


async def cmd_dedupe(args: argparse.Namespace) -> int:
    history = ChatHistoryManager()
    before = {tool: len(chats) for tool, chats in history.get_all_histories().items()}
    for tool, kept in history.remove_all_duplicates().items():
        after = len(kept)
        print(f"  {tool:<12} {before[tool] - after} removed, {after} kept")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("omnistudio.main:app", host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="omnistudio",
        description="AI Studio chat history and generation companion",
    )
    parser.add_argument("--api-url", default=None, help="Studio API base URL (default: probe candidates)")
    parser.add_argument("--token", default=None, help="Bearer token (default: STUDIO_TOKEN)")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Log level (default: %(default)s)")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Log in and print the token")
    p.add_argument("identifier", help="Email or username")
    p.add_argument("--password", default=None, help="Password (prompted when omitted)")
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("sync", help="Reconcile server chats into the local histories")
    p.add_argument("--json", action="store_true", help="Output JSON")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("history", help="List cached chats of a tool")
    p.add_argument("tool", choices=TOOLS)
    p.add_argument("--json", action="store_true", help="Output JSON")
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("generate", help="Run a generation job to completion")
    p.add_argument("tool", choices=sorted(workflows.TOOL_JOBS))
    p.add_argument("prompt")
    p.add_argument("--chat-id", default=None, help="Local chat to append the result to")
    p.add_argument("--options", type=json.loads, default=None, help="JSON object forwarded to the generate endpoint")
    p.add_argument("--timeout", type=float, default=None, help="Job timeout in seconds")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("dedupe", help="Remove duplicate chats from every tool history")
    p.set_defaults(func=cmd_dedupe)

    p = sub.add_parser("serve", help="Run the sidecar service")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8020)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.func is cmd_serve:
        return cmd_serve(args)
    try:
        return asyncio.run(args.func(args))
    except StudioError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
