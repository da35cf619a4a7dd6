"""Канал уведомлений для обновления интерфейса.

Подписчик получает только сообщения своего турнира; если его очередь
переполнена, сообщение для него теряется.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class MsgKind(str, Enum):
    PARTICIPANTS_UPDATE = "participants_update"
    DRAW_UPDATED = "draw_updated"
    TEAM_AVAILABILITY_UPDATE = "team_availability_update"
    JUDGE_AVAILABILITY_UPDATE = "judge_availability_update"


@dataclass(frozen=True)
class Msg:
    tournament_id: str
    kind: MsgKind
    round_id: str | None = None


class Broadcaster:
    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, tournament_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[tournament_id].add(queue)
        return queue

    def unsubscribe(self, tournament_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(tournament_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(tournament_id, None)

    def publish(self, msg: Msg) -> int:
        """Рассылает сообщение; возвращает число подписчиков, получивших его."""
        delivered = 0
        for queue in list(self._subscribers.get(msg.tournament_id, ())):
            try:
                queue.put_nowait(msg)
            except asyncio.QueueFull:
                logger.debug("Dropping %s for a slow subscriber of %s", msg.kind.value, msg.tournament_id)
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, tournament_id: str) -> int:
        return len(self._subscribers.get(tournament_id, ()))
