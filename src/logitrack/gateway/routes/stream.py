"""SSE 事件流路由

GET /api/stream/task/{task_id}: 推送任务的历史事件与实时流转事件。
支持 Last-Event-ID 断线重连与心跳保活；流转到终态的事件携带 final: true，
推送后关闭流。
"""

import asyncio
import json

from fastapi import APIRouter, Depends, Request
from logitrack.core.config import SSE_HEARTBEAT_INTERVAL
from logitrack.core.exceptions import TaskNotFoundError
from logitrack.core.models import TERMINAL_STATES, EventType, TaskStatus
from logitrack.core.models.event import Event
from sse_starlette.sse import EventSourceResponse

from ..deps import get_sse_hub, get_store_group
from ..errors import transition_error_response

router = APIRouter()


def _is_terminal_event(event: Event) -> bool:
    """流转到终态的 STATE_TRANSITION 事件"""
    if event.type != EventType.STATE_TRANSITION:
        return False
    try:
        return TaskStatus(event.payload.get("to_status")) in TERMINAL_STATES
    except ValueError:
        return False


def _to_sse(event: Event) -> dict:
    final = _is_terminal_event(event)
    data = {
        "event_id": event.event_id,
        "task_id": event.task_id,
        "task_seq": event.task_seq,
        "ts": event.ts.isoformat(),
        "type": event.type.value,
        "actor": event.actor.value,
        "payload": event.payload,
        "final": final,
    }
    return {
        "id": event.event_id,
        "event": event.type.value,
        "data": json.dumps(data, ensure_ascii=False),
    }


@router.get("/api/stream/task/{task_id}")
async def stream_task_events(
    task_id: str,
    request: Request,
    store_group=Depends(get_store_group),
    sse_hub=Depends(get_sse_hub),
):
    task = await store_group.task_store.get_task(task_id)
    if task is None:
        return transition_error_response(TaskNotFoundError(task_id))

    last_event_id = request.headers.get("last-event-id")

    async def event_generator():
        # 先订阅再读历史，避免两者之间提交的事件丢失
        queue = await sse_hub.subscribe(task_id)
        try:
            if last_event_id:
                history = await store_group.event_store.get_events_after(
                    task_id, last_event_id
                )
            else:
                history = await store_group.event_store.get_events_for_task(task_id)

            sent: set[str] = set()
            for event in history:
                sent.add(event.event_id)
                yield _to_sse(event)
                if _is_terminal_event(event):
                    return

            if task.status in TERMINAL_STATES:
                return

            while True:
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue
                if event.event_id in sent:
                    continue
                yield _to_sse(event)
                if _is_terminal_event(event):
                    return
        finally:
            await sse_hub.unsubscribe(task_id, queue)

    return EventSourceResponse(event_generator())
