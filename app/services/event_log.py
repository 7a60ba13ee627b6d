"""
Event log service
房间事件日志 - 追加写入、按上次事件ID补拉
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from app.core.store import Store
from app.models import GameEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[GameEvent], Awaitable[None]]


class EventLog:
    """
    Append-only per-room event sequence.
    写入必须发生在对应状态修改完成之后；补拉结果按ID升序（旧的在前）
    """

    def __init__(self, store: Store):
        self.store = store
        self.listeners: List[EventListener] = []

    def append(self, room_id: str, event_type: str, event_data: Optional[Dict[str, Any]] = None) -> GameEvent:
        event = self.store.add_event(
            room_id=room_id,
            event_type=str(getattr(event_type, "value", event_type)),
            event_data=event_data,
        )
        logger.info(f"[EVENT] #{event.id} {event.event_type} room={room_id}")
        return event

    def events_since(self, room_id: str, last_event_id: int = 0) -> List[GameEvent]:
        """返回 id > last_event_id 的事件，升序"""
        return self.store.events_for(room_id, after_id=last_event_id)

    def latest(self, room_id: str, event_type: str) -> Optional[GameEvent]:
        event_type = str(getattr(event_type, "value", event_type))
        for event in reversed(self.store.events_for(room_id)):
            if event.event_type == event_type:
                return event
        return None

    def subscribe(self, listener: EventListener) -> None:
        self.listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    async def publish(self, events: Iterable[GameEvent]) -> None:
        """通知推送通道；推送失败只记录日志，客户端可通过补拉恢复"""
        for event in events:
            for listener in list(self.listeners):
                try:
                    await listener(event)
                except Exception as e:
                    logger.error(f"[EVENT] Listener failed for event #{event.id}: {e}")
