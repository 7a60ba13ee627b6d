"""
Round timer
每个房间一个可取消的倒计时任务
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

# 返回 True 继续计时，False 结束
TickCallback = Callable[[], Awaitable[bool]]


class RoundTimer:
    """
    Owns at most one countdown task per room.
    启动新倒计时前先取消旧的，避免同一房间重复扣减 time_left
    """

    def __init__(self, tick_interval: Optional[float] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.tick_interval = settings.TIMER_TICK_SEC if tick_interval is None else tick_interval
        self.sleep = sleep
        self.tasks: Dict[str, asyncio.Task] = {}

    def start(self, room_id: str, on_tick: TickCallback) -> asyncio.Task:
        self.cancel(room_id)
        task = asyncio.create_task(self._run(room_id, on_tick), name=f"round-timer-{room_id}")
        self.tasks[room_id] = task
        logger.debug(f"[TIMER] Started countdown for room {room_id}")
        return task

    def cancel(self, room_id: str) -> bool:
        """
        取消房间倒计时
        在计时任务自身的回调中调用时只解除登记，由回调返回 False 结束循环
        """
        task = self.tasks.pop(room_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
            logger.debug(f"[TIMER] Cancelled countdown for room {room_id}")
        return True

    def is_running(self, room_id: str) -> bool:
        task = self.tasks.get(room_id)
        return task is not None and not task.done()

    async def _run(self, room_id: str, on_tick: TickCallback) -> None:
        try:
            while True:
                await self.sleep(self.tick_interval)
                try:
                    keep_going = await on_tick()
                except Exception as e:
                    logger.error(f"[TIMER] Tick failed for room {room_id}: {e}", exc_info=True)
                    keep_going = True
                if not keep_going:
                    break
        except asyncio.CancelledError:
            logger.debug(f"[TIMER] Countdown task cancelled for room {room_id}")
            raise
        finally:
            if self.tasks.get(room_id) is asyncio.current_task():
                del self.tasks[room_id]

    async def cancel_all(self) -> None:
        tasks = list(self.tasks.values())
        self.tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(f"[TIMER] Cancelled {len(tasks)} countdown tasks")
