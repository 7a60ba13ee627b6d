"""
Liveness monitor
后台心跳巡检 - 移除长时间无心跳的玩家，房主先转移再移除
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.services.session_manager import SessionManager, session_manager

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """心跳巡检服务"""

    def __init__(self, manager: SessionManager, interval: Optional[float] = None,
                 threshold: Optional[float] = None):
        self.manager = manager
        self.interval = interval or settings.LIVENESS_CHECK_INTERVAL
        self.threshold = threshold or settings.INACTIVE_PLAYER_TIMEOUT
        self.is_running = False
        self.sweep_task: Optional[asyncio.Task] = None

    async def start(self):
        if self.is_running:
            logger.warning("[LIVENESS] Monitor already running")
            return

        self.is_running = True
        self.sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"[LIVENESS] Monitor started, interval={self.interval}s, threshold={self.threshold}s")

    async def stop(self):
        if not self.is_running:
            return

        self.is_running = False
        if self.sweep_task:
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass
            self.sweep_task = None

        logger.info("[LIVENESS] Monitor stopped")

    async def _sweep_loop(self):
        while self.is_running:
            await asyncio.sleep(self.interval)
            try:
                evicted = await self.sweep_once()
                if evicted:
                    logger.info(f"[LIVENESS] Evicted {len(evicted)} inactive players")
            except Exception as e:
                logger.error(f"[LIVENESS] Sweep failed: {e}", exc_info=True)

    def find_inactive(self) -> List[str]:
        now = self.manager.clock()
        return [
            p.id for p in self.manager.store.iter_players()
            if (now - p.last_active).total_seconds() > self.threshold
        ]

    async def sweep_once(self) -> List[str]:
        """
        执行一次巡检
        每个候选玩家在房间锁内重新检查心跳时间，刚发送心跳的玩家不会被移除
        """
        evicted = []
        for player_id in self.find_inactive():
            if await self.manager.evict_if_inactive(player_id, self.threshold):
                evicted.append(player_id)
        return evicted

    async def sweep_with_stats(self) -> Dict[str, Any]:
        """手动巡检，返回巡检前后的统计"""
        before = self._host_stats()
        evicted = await self.sweep_once()
        after = self._host_stats()
        logger.info(f"[LIVENESS] Manual sweep evicted {len(evicted)} players")
        return {"evicted": evicted, "before": before, "after": after}

    def _host_stats(self) -> Dict[str, int]:
        store = self.manager.store
        return {
            "rooms": len(store.rooms),
            "players": len(store.players),
            "hosts": sum(1 for p in store.players.values() if p.is_host),
        }


# 全局巡检实例
liveness_monitor = LivenessMonitor(session_manager)


async def start_background_tasks():
    """启动所有后台任务"""
    await liveness_monitor.start()


async def stop_background_tasks():
    """停止所有后台任务"""
    await liveness_monitor.stop()
    await session_manager.shutdown()


def get_liveness_monitor() -> LivenessMonitor:
    """获取巡检服务实例"""
    return liveness_monitor
