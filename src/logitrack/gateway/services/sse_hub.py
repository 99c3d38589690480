"""SSEHub -- 内存中的任务事件广播器

每个订阅者持有一个有界 asyncio.Queue；消费过慢（队列已满）的订阅者
会被移除，客户端可凭 Last-Event-ID 重连补齐历史事件。
"""

import asyncio
from collections import defaultdict

import structlog
from logitrack.core.models.event import Event

log = structlog.get_logger()


class SSEHub:
    """按 task_id 分组的发布/订阅"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    def subscriber_count(self, task_id: str) -> int:
        return len(self._subscribers.get(task_id, ()))

    async def subscribe(self, task_id: str) -> asyncio.Queue:
        """订阅指定任务的事件流，返回接收事件的队列"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[task_id].add(queue)
        return queue

    async def unsubscribe(self, task_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(task_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[task_id]

    async def broadcast(self, task_id: str, event: Event) -> None:
        """向任务的所有订阅者推送事件"""
        subscribers = self._subscribers.get(task_id)
        if not subscribers:
            return

        dropped = [q for q in list(subscribers) if not self._offer(q, event)]
        for queue in dropped:
            subscribers.discard(queue)
        if dropped:
            log.warning(
                "sse_subscriber_dropped",
                task_id=task_id,
                dropped=len(dropped),
            )
        if not subscribers:
            del self._subscribers[task_id]

    @staticmethod
    def _offer(queue: asyncio.Queue, event: Event) -> bool:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True
