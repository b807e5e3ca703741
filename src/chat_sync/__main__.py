"""Entrypoint: python -m chat_sync <peer_id>"""
from __future__ import annotations

import argparse
import asyncio
import logging

from chat_sync.application.exceptions import AppError, AuthError
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.auth.token_provider import SettingsCredentialProvider, token_subject
from chat_sync.services.chat_client import ChatClient
from chat_sync.services.chat_session import ChatSession

logger = logging.getLogger("chat_sync")


def _print_message(message: Message, user_id: str) -> None:
    who = "you" if message.sender_id == user_id else message.sender_id
    marker = " (sending)" if message.optimistic else ""
    print(f"[{message.created_at:%H:%M}] {who}: {message.content}{marker}", flush=True)


async def run(peer_id: str, user_id: str | None) -> int:
    credentials = SettingsCredentialProvider(settings)
    try:
        token = credentials.get_token()
    except AuthError as exc:
        logger.error("Authentication failed: %s", exc.detail)
        return 1
    user_id = user_id or (token_subject(token) if token else None)
    if not user_id:
        logger.error("Pass --user or use a CHAT_TOKEN whose 'sub' claim is the user id")
        return 2

    client = ChatClient(credentials, settings)
    session = ChatSession(client, user_id)
    client.connection.add_state_listener(lambda state: logger.info("Connection %s", state))

    session.add_message_listener(lambda message: _print_message(message, session.user_id))

    try:
        await session.start()
        await session.open_conversation(peer_id)
        if session.store is not None:
            for message in session.store.messages():
                _print_message(message, session.user_id)
        if session.load_error:
            logger.error("History unavailable: %s", session.load_error)

        while True:
            line = await asyncio.to_thread(input)
            if line.strip() in {"/quit", "/exit"}:
                break
            if line.strip() == "/retry":
                await session.retry_load()
                continue
            if await session.send(line) is None and session.notices.active:
                print(session.notices.active[-1].text, flush=True)
    except AuthError as exc:
        logger.error("Authentication failed: %s", exc.detail)
        return 1
    except AppError as exc:
        logger.error("%s", exc.detail or type(exc).__name__)
        return 1
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await session.stop()
        await client.aclose()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(prog="chat_sync", description="Terminal chat over the broker.")
    parser.add_argument("peer_id", help="user id of the other participant")
    parser.add_argument("--user", dest="user_id", help="your user id (defaults to the token subject)")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    raise SystemExit(asyncio.run(run(args.peer_id, args.user_id)))


if __name__ == "__main__":
    main()
