"""Transient, auto-expiring user notices."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Notice:
    id: int
    text: str


class NoticeBoard:
    def __init__(self, ttl_seconds: float) -> None:
        self._ttl = ttl_seconds
        self._ids = itertools.count(1)
        self._notices: dict[int, Notice] = {}
        self._timers: dict[int, asyncio.TimerHandle] = {}

    @property
    def active(self) -> list[Notice]:
        return list(self._notices.values())

    def post(self, text: str) -> Notice:
        notice = Notice(id=next(self._ids), text=text)
        self._notices[notice.id] = notice
        loop = asyncio.get_running_loop()
        self._timers[notice.id] = loop.call_later(self._ttl, self.dismiss, notice.id)
        return notice

    def dismiss(self, notice_id: int) -> None:
        self._notices.pop(notice_id, None)
        timer = self._timers.pop(notice_id, None)
        if timer is not None:
            timer.cancel()

    def clear(self) -> None:
        for notice_id in list(self._notices):
            self.dismiss(notice_id)
