"""
Pytest configuration and fixtures
测试配置和固件
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")

import random
from datetime import datetime, timedelta
from typing import List, Sequence

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions import JudgeError
from app.main import app
from app.schemas.evaluation import DrawingSubmission, EvaluationResult
from app.services.judge import Judge, OfflineJudge
from app.services.liveness import LivenessMonitor, get_liveness_monitor
from app.services.round_timer import RoundTimer
from app.services.session_manager import SessionManager, get_session_manager
from app.websocket.connection_manager import connection_manager

# 足够长的画布数据，超过最小内容阈值
CANVAS = "data:image/png;base64," + "iVBORw0KGgo" * 20


class FakeClock:
    """Controllable clock for liveness tests"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class SleepRecorder:
    """Records backoff delays instead of sleeping"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FailingJudge(Judge):
    """Always fails; counts attempts"""

    name = "failing"

    def __init__(self):
        self.calls = 0

    async def evaluate(self, submissions: Sequence[DrawingSubmission], keyword: str) -> EvaluationResult:
        self.calls += 1
        raise JudgeError("upstream unavailable")


def build_manager(judge: Judge = None, clock=None, sleep=None, seed: int = 7) -> SessionManager:
    judge = judge or OfflineJudge()
    return SessionManager(
        judge_factory=lambda model: judge,
        clock=clock or FakeClock(),
        judge_sleep=sleep or SleepRecorder(),
        timer=RoundTimer(tick_interval=3600),
        rng=random.Random(seed),
        min_canvas_length=10,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
async def manager(clock, sleeper):
    """Session manager with the offline judge and a countdown that never fires on its own"""
    m = build_manager(clock=clock, sleep=sleeper)
    yield m
    await m.shutdown()


@pytest.fixture
def api_manager():
    return build_manager()


@pytest.fixture
def client(api_manager):
    """Test client bound to a fresh session manager"""
    monitor = LivenessMonitor(api_manager, interval=3600, threshold=30)
    app.dependency_overrides[get_session_manager] = lambda: api_manager
    app.dependency_overrides[get_liveness_monitor] = lambda: monitor
    api_manager.event_log.subscribe(connection_manager.push_event)

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(api_manager.shutdown)

    api_manager.event_log.unsubscribe(connection_manager.push_event)
    app.dependency_overrides.clear()
