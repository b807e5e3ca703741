"""Unread badge backed by the server's authoritative count."""
from __future__ import annotations

import asyncio
import logging

from chat_sync.application.exceptions import AuthError, FetchError
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings

logger = logging.getLogger(__name__)


class UnreadCounter:
    """Never trusts a client-side increment; the badge only ever shows a
    value returned by the count collaborator, or zero.
    """

    def __init__(self, api: ChatApi, settings: Settings = default_settings) -> None:
        self._api = api
        self._poll_interval = settings.UNREAD_POLL_INTERVAL_SECONDS
        self._grace_delay = settings.UNREAD_GRACE_DELAY_SECONDS
        self._badge = 0
        self._poll_task: asyncio.Task[None] | None = None
        self._grace_task: asyncio.Task[None] | None = None

    @property
    def badge(self) -> int:
        return self._badge

    @property
    def badge_label(self) -> str:
        if self._badge <= 0:
            return ""
        return "9+" if self._badge > 9 else str(self._badge)

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def refresh(self, user_id: str) -> int:
        try:
            count = await self._api.fetch_unread_count(str(user_id))
        except FetchError as exc:
            logger.warning("Unread count unavailable: %s", exc.detail)
            self._badge = 0
            return 0
        except AuthError:
            self._badge = 0
            raise
        self._badge = max(count, 0)
        return self._badge

    def mark_opened_optimistically(self, user_id: str) -> None:
        """Zero the badge now, re-check with the server after a grace delay."""
        self._badge = 0
        self.stop_polling()
        if self._grace_task is not None:
            self._grace_task.cancel()
        self._grace_task = asyncio.create_task(
            self._refresh_after_grace(str(user_id)), name="unread-grace-refresh",
        )

    def start_polling(self, user_id: str) -> None:
        if self.polling:
            return
        self._poll_task = asyncio.create_task(
            self._poll(str(user_id)), name="unread-poll",
        )

    def stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def aclose(self) -> None:
        tasks = [t for t in (self._poll_task, self._grace_task) if t is not None]
        self._poll_task = self._grace_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _refresh_after_grace(self, user_id: str) -> None:
        await asyncio.sleep(self._grace_delay)
        try:
            await self.refresh(user_id)
        except AuthError as exc:
            logger.error("Unread refresh rejected: %s", exc.detail)

    async def _poll(self, user_id: str) -> None:
        while True:
            try:
                await self.refresh(user_id)
            except AuthError as exc:
                logger.error("Unread polling stopped, credential rejected: %s", exc.detail)
                return
            await asyncio.sleep(self._poll_interval)
