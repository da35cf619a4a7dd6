"""Общее состояние приложения, передаваемое в обработчики."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from tabroom.services.broadcast import Broadcaster


@dataclass
class AppState:
    session_factory: async_sessionmaker
    executor: ThreadPoolExecutor
    broadcaster: Broadcaster
    jobs: set[asyncio.Task] = field(default_factory=set)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        # Держим ссылку на фоновую задачу до её завершения.
        self.jobs.add(task)
        task.add_done_callback(self.jobs.discard)
        return task


def get_app_state(request: Request) -> AppState:
    return request.app.state.tab
