"""Entrypoint: python -m chat_sync --conversation ID --user-id ID"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from chat_sync.app import open_session
from chat_sync.application.exceptions import AuthRequired, SyncError
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.identity import Identity
from chat_sync.logging_context import ConversationContextFilter

logger = logging.getLogger("chat_sync")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chat_sync", description="Open one conversation and chat from stdin.")
    parser.add_argument("--conversation", required=True, help="conversation id to open")
    parser.add_argument("--user-id", required=True, help="local user id")
    parser.add_argument("--name", default="Unknown", help="local display name")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def _printer(own_id: str):
    seen: dict[str, str] = {}

    def on_change(messages: list[Message]) -> None:
        for message in messages:
            if seen.get(message.id) == message.status:
                continue
            seen[message.id] = message.status
            who = "me" if message.sender.id == own_id else message.sender.name
            print(f"[{message.status}] {who}: {message.content or ''}", flush=True)

    return on_change


async def _run(args: argparse.Namespace) -> int:
    identity = Identity(id=args.user_id, name=args.name)

    def on_auth_required(exc: AuthRequired) -> None:
        print(f"! authentication required: {exc.detail}", file=sys.stderr, flush=True)

    def on_peer_typing(typing: bool) -> None:
        if typing:
            print("... peer is typing", flush=True)

    loop = asyncio.get_running_loop()
    async with open_session(
        args.conversation,
        identity,
        on_change=_printer(identity.id),
        on_auth_required=on_auth_required,
        on_peer_typing=on_peer_typing,
    ) as session:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            text = line.rstrip("\n")
            if not text.strip():
                continue
            try:
                await session.send(text)
            except AuthRequired as exc:
                print(f"! authentication required: {exc.detail}", file=sys.stderr, flush=True)
                return 2
            except SyncError as exc:
                print(f"! {exc.detail}", file=sys.stderr, flush=True)
    return 0


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    handler = logging.StreamHandler()
    handler.addFilter(ConversationContextFilter())
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s [%(conversation_id)s]: %(message)s",
        handlers=[handler],
    )
    try:
        code = asyncio.run(_run(args))
    except AuthRequired as exc:
        logger.error("Cannot open session: %s", exc.detail)
        code = 2
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
