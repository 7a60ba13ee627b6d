"""
Session manager
房间会话状态机 - 加入/离开/开始/提交/评分/房主转移

waiting -> playing -> scoring -> finished -> playing (下一回合)
最后一名玩家离开时房间被销毁
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from app.core.config import settings
from app.core.exceptions import (
    GameRuleError, HostInvariantError, NotHostError, PlayerNotFoundError, RoomNotFoundError
)
from app.core.store import Store
from app.models import EventType, GameEvent, JudgeModel, Player, Room, RoomStatus
from app.models.player import NICKNAME_MAX_LENGTH
from app.schemas.evaluation import DrawingSubmission, EvaluationResult
from app.services.event_log import EventLog
from app.services.judge import (
    Judge, append_unranked, evaluate_with_retry, placeholder_evaluation, split_by_content
)
from app.services.round_timer import RoundTimer

logger = logging.getLogger(__name__)

KEYWORDS = [
    "cat", "dog", "car", "house", "tree", "flower", "sun", "moon", "star", "sea",
    "mountain", "bird", "fish", "apple", "banana", "cake", "pizza", "hamburger",
    "computer", "phone",
]


def _default_judge_factory(model: JudgeModel) -> Judge:
    from app.services.llm import get_judge
    return get_judge(model)


class SessionManager:
    """
    Per-room state machine over the in-memory store.
    每个房间一把 asyncio.Lock；评审调用期间不持锁，回写结果时重新加锁并校验回合
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        event_log: Optional[EventLog] = None,
        timer: Optional[RoundTimer] = None,
        judge_factory: Optional[Callable[[JudgeModel], Judge]] = None,
        clock: Callable[[], datetime] = datetime.now,
        judge_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        round_duration: Optional[int] = None,
        min_canvas_length: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store or Store()
        self.event_log = event_log or EventLog(self.store)
        self.timer = timer or RoundTimer()
        self.judge_factory = judge_factory or _default_judge_factory
        self.clock = clock
        self.judge_sleep = judge_sleep
        self.round_duration = round_duration or settings.ROUND_DURATION_SEC
        self.min_canvas_length = settings.MIN_CANVAS_DATA_LENGTH if min_canvas_length is None else min_canvas_length
        self.rng = rng or random.Random()

        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _lock(self, room_id: str) -> asyncio.Lock:
        """
        房间锁只在 create_room 中创建；未知房间直接拒绝，不为其分配锁
        取得锁后调用方仍需重新检查房间是否存在
        """
        lock = self._locks.get(room_id)
        if lock is None:
            raise RoomNotFoundError(room_id)
        return lock

    def _forget_lock(self, room_id: str) -> None:
        """房间已销毁时在释放锁之后移除锁；仍在等待旧锁的协程取得锁后会发现房间不存在"""
        if self.store.get_room(room_id) is None:
            self._locks.pop(room_id, None)

    def _require_room(self, room_id: str) -> Room:
        room = self.store.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def _require_member(self, room_id: str, player_id: str) -> Player:
        player = self.store.get_player(player_id)
        if player is None or player.room_id != room_id:
            raise PlayerNotFoundError(player_id, room_id)
        return player

    def _snapshot(self, room: Room) -> Dict[str, Any]:
        return {
            "room": room.model_dump(mode="json"),
            "players": [p.model_dump(mode="json") for p in self.store.players_in_room(room.id)],
        }

    def _roster(self, room_id: str) -> List[Dict[str, Any]]:
        return [
            {"id": p.id, "nickname": p.nickname, "isHost": p.is_host, "score": p.score}
            for p in self.store.players_in_room(room_id)
        ]

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[ROUND] Background scoring failed: {task.exception()!r}")

    def _destroy_room(self, room_id: str) -> None:
        self.timer.cancel(room_id)
        self.store.delete_room(room_id)
        logger.info(f"[ROOM] Room {room_id} destroyed")

    @staticmethod
    def _require_fields(**fields) -> None:
        missing = [name for name, value in fields.items() if value is None or value == ""]
        if missing:
            raise GameRuleError("missing_fields", f"Missing required fields: {', '.join(missing)}")

    @staticmethod
    def _require_nickname(nickname: str) -> None:
        if len(nickname) > NICKNAME_MAX_LENGTH:
            raise GameRuleError(
                "invalid_nickname", f"Nickname must be at most {NICKNAME_MAX_LENGTH} characters"
            )

    # ------------------------------------------------------------------
    # room lifecycle
    # ------------------------------------------------------------------

    async def create_room(self, host_id: str, nickname: str, judge_model: Optional[str] = None) -> Dict[str, Any]:
        """创建房间，房主作为第一个玩家加入"""
        self._require_fields(hostId=host_id, nickname=nickname)
        self._require_nickname(nickname)
        try:
            model = JudgeModel(judge_model or settings.DEFAULT_JUDGE_MODEL)
        except ValueError:
            raise GameRuleError("invalid_judge_model", f"Unknown judge model: {judge_model}")
        if self.store.get_player(host_id) is not None:
            raise GameRuleError("player_exists", f"Player {host_id} is already in a room", status_code=409)

        # 刚销毁的房间在锁释放前仍占用房间码
        room_id = str(self.rng.randint(100000, 999999))
        while self.store.get_room(room_id) is not None or room_id in self._locks:
            room_id = str(self.rng.randint(100000, 999999))

        now = self.clock()
        lock = self._locks[room_id] = asyncio.Lock()
        async with lock:
            room = self.store.add_room(Room(
                id=room_id,
                host_id=host_id,
                judge_model=model,
                time_left=self.round_duration,
                created_at=now,
            ))
            self.store.add_player(Player(
                id=host_id,
                room_id=room_id,
                nickname=nickname,
                is_host=True,
                joined_at=now,
                last_active=now,
            ))
            event = self.event_log.append(room_id, EventType.ROOM_CREATED, {
                "hostId": host_id,
                "nickname": nickname,
                "judgeModel": model.value,
            })
            result = {"roomId": room_id, **self._snapshot(room)}

        await self.event_log.publish([event])
        logger.info(f"[ROOM] Room {room_id} created by {host_id} ({nickname}), judge={model.value}")
        return result

    async def join_room(self, room_id: str, player_id: str, nickname: str) -> Dict[str, Any]:
        """加入等待中的房间；昵称在房间内唯一（区分大小写）"""
        self._require_fields(roomId=room_id, playerId=player_id, nickname=nickname)
        self._require_nickname(nickname)

        async with self._lock(room_id):
            room = self._require_room(room_id)
            if room.status != RoomStatus.WAITING:
                raise GameRuleError("not_waiting", "The game has already started", status_code=409)

            players = self.store.players_in_room(room_id)
            if any(p.nickname == nickname for p in players):
                raise GameRuleError("nickname_taken", f"Nickname '{nickname}' is already taken", status_code=409)
            if self.store.get_player(player_id) is not None:
                raise GameRuleError("player_exists", f"Player {player_id} is already in a room", status_code=409)

            now = self.clock()
            self.store.add_player(Player(
                id=player_id,
                room_id=room_id,
                nickname=nickname,
                joined_at=now,
                last_active=now,
            ))
            event = self.event_log.append(room_id, EventType.PLAYER_JOINED, {
                "playerId": player_id,
                "nickname": nickname,
                "roster": self._roster(room_id),
            })
            result = {**self._snapshot(room), "isHost": False}

        await self.event_log.publish([event])
        logger.info(f"[ROOM] Player {player_id} ({nickname}) joined room {room_id}")
        return result

    async def leave_room(self, room_id: str, player_id: str, reason: str = "left") -> Dict[str, Any]:
        """
        Voluntary leave.
        房主离开时先转移房主再移除；最后一人离开则销毁房间
        """
        self._require_fields(roomId=room_id, playerId=player_id)
        events: List[GameEvent] = []

        async with self._lock(room_id):
            self._require_room(room_id)
            player = self._require_member(room_id, player_id)
            outcome = self._leave_locked(room_id, player, reason, events)

        self._forget_lock(room_id)
        await self._after_leave(room_id, outcome, events)
        return {"isHost": outcome["isHost"], "roomDeleted": outcome["roomDeleted"]}

    def _leave_locked(self, room_id: str, player: Player, reason: str, events: List[GameEvent]) -> Dict[str, Any]:
        """持锁执行的离开流程，供主动离开和心跳超时共用"""
        room = self._require_room(room_id)
        was_host = player.is_host
        remaining = [p for p in self.store.players_in_room(room_id) if p.id != player.id]

        if not remaining:
            self._destroy_room(room_id)
            return {"isHost": was_host, "roomDeleted": True, "scoringRound": None}

        if was_host:
            new_host = self.find_new_host(room_id, exclude_player_id=player.id)
            self.transfer_host(room_id, new_host.id)
            events.append(self.event_log.append(room_id, EventType.HOST_TRANSFERRED, {
                "oldHostId": player.id,
                "oldHostNickname": player.nickname,
                "newHostId": new_host.id,
                "newHostNickname": new_host.nickname,
            }))
            logger.info(f"[ROOM] Host of room {room_id} moved from {player.id} to {new_host.id}")

        self.remove_player(room_id, player.id)
        events.append(self.event_log.append(room_id, EventType.PLAYER_LEFT, {
            "playerId": player.id,
            "nickname": player.nickname,
            "reason": reason,
        }))

        scoring_round = None
        if room.status == RoomStatus.PLAYING and all(p.has_submitted for p in remaining):
            events.append(self._enter_scoring(room, "player_left"))
            scoring_round = room.round_number

        return {"isHost": was_host, "roomDeleted": False, "scoringRound": scoring_round}

    async def _after_leave(self, room_id: str, outcome: Dict[str, Any], events: List[GameEvent]) -> None:
        await self.event_log.publish(events)
        if outcome["scoringRound"] is not None:
            self._spawn(self._run_scoring(room_id, outcome["scoringRound"]))

    def remove_player(self, room_id: str, player_id: str) -> bool:
        """
        删除玩家记录，不负责选新房主（调用方需先 transfer_host）
        房间变空时级联删除。调用方持有房间锁
        """
        player = self.store.get_player(player_id)
        if player is None or player.room_id != room_id:
            return False
        self.store.delete_player(player_id)
        if not self.store.players_in_room(room_id):
            self._destroy_room(room_id)
        return True

    def find_new_host(self, room_id: str, exclude_player_id: Optional[str] = None) -> Optional[Player]:
        """最早加入的其余玩家"""
        for player in self.store.players_in_room(room_id):
            if player.id != exclude_player_id:
                return player
        return None

    def transfer_host(self, room_id: str, new_host_id: str) -> Player:
        """
        Move host authority and verify exactly one host remains.
        校验失败抛出 HostInvariantError，不做静默修复。调用方持有房间锁
        """
        room = self._require_room(room_id)
        new_host = self._require_member(room_id, new_host_id)

        new_host.is_host = True
        for player in self.store.players_in_room(room_id):
            if player.id != new_host_id:
                player.is_host = False
        room.host_id = new_host_id

        hosts = [p for p in self.store.players_in_room(room_id) if p.is_host]
        if len(hosts) != 1 or hosts[0].id != new_host_id or room.host_id != new_host_id:
            logger.error(f"[ROOM] Host verification failed in room {room_id}: hosts={[p.id for p in hosts]}")
            raise HostInvariantError(f"Room {room_id} has {len(hosts)} hosts after transfer to {new_host_id}")
        return new_host

    # ------------------------------------------------------------------
    # rounds
    # ------------------------------------------------------------------

    def _begin_round(self, room: Room) -> None:
        """新回合：抽题、重置提交状态、重启倒计时（调用方持锁）"""
        room.current_keyword = self.rng.choice(KEYWORDS)
        room.time_left = self.round_duration
        for player in self.store.players_in_room(room.id):
            player.has_submitted = False
        room.status = RoomStatus.PLAYING

        room_id, round_number = room.id, room.round_number
        self.timer.start(room_id, lambda: self._on_tick(room_id, round_number))
        logger.info(f"[ROUND] Room {room_id} round {round_number} started, keyword={room.current_keyword}")

    async def start_game(self, room_id: str, host_id: str) -> Dict[str, Any]:
        self._require_fields(roomId=room_id, hostId=host_id)

        async with self._lock(room_id):
            room = self._require_room(room_id)
            if room.host_id != host_id:
                raise NotHostError(host_id)
            if room.status != RoomStatus.WAITING:
                raise GameRuleError("invalid_state", f"Cannot start a game while {room.status.value}", status_code=409)

            self._begin_round(room)
            event = self.event_log.append(room_id, EventType.GAME_STARTED, {"keyword": room.current_keyword})
            result = {"keyword": room.current_keyword, "roundNumber": room.round_number}

        await self.event_log.publish([event])
        return result

    async def next_round(self, room_id: str, host_id: str) -> Dict[str, Any]:
        self._require_fields(roomId=room_id, hostId=host_id)

        async with self._lock(room_id):
            room = self._require_room(room_id)
            if room.host_id != host_id:
                raise NotHostError(host_id)
            if room.status != RoomStatus.FINISHED:
                raise GameRuleError("invalid_state", f"Cannot start next round while {room.status.value}", status_code=409)

            room.round_number += 1
            self._begin_round(room)
            event = self.event_log.append(room_id, EventType.NEXT_ROUND_STARTED, {
                "keyword": room.current_keyword,
                "roundNumber": room.round_number,
            })
            result = {"keyword": room.current_keyword, "roundNumber": room.round_number}

        await self.event_log.publish([event])
        return result

    async def _on_tick(self, room_id: str, round_number: int) -> bool:
        """倒计时回调；回合已结束或已切换时不做任何事"""
        lock = self._locks.get(room_id)
        if lock is None:
            return False
        async with lock:
            room = self.store.get_room(room_id)
            if room is None or room.status != RoomStatus.PLAYING or room.round_number != round_number:
                return False
            room.time_left = max(0, room.time_left - 1)
            if room.time_left > 0:
                return True
            event = self._enter_scoring(room, "time_up")

        await self.event_log.publish([event])
        self._spawn(self._run_scoring(room_id, round_number))
        return False

    def _enter_scoring(self, room: Room, reason: str) -> GameEvent:
        """playing -> scoring（调用方持锁）"""
        room.status = RoomStatus.SCORING
        self.timer.cancel(room.id)
        logger.info(f"[ROUND] Room {room.id} round {room.round_number} scoring ({reason})")
        return self.event_log.append(room.id, EventType.AI_EVALUATION_STARTED, {
            "reason": reason,
            "roundNumber": room.round_number,
        })

    async def submit_drawing(self, player_id: str, room_id: str, canvas_data: Optional[str]) -> Dict[str, Any]:
        """
        提交作品；同一回合重复提交会被拒绝
        全员提交后立即评分，并在返回值中带上本回合结果
        """
        self._require_fields(playerId=player_id, roomId=room_id)
        if canvas_data is None:
            raise GameRuleError("missing_fields", "Missing required fields: canvasData")

        events: List[GameEvent] = []
        async with self._lock(room_id):
            room = self._require_room(room_id)
            if room.status != RoomStatus.PLAYING:
                raise GameRuleError("not_playing", "The room is not accepting drawings", status_code=409)
            player = self._require_member(room_id, player_id)
            if player.has_submitted:
                raise GameRuleError("already_submitted", "Drawing already submitted this round", status_code=409)

            now = self.clock()
            self.store.add_drawing(
                player_id=player_id,
                room_id=room_id,
                round_number=room.round_number,
                canvas_data=canvas_data,
                keyword=room.current_keyword or "",
                submitted_at=now,
            )
            player.has_submitted = True
            player.last_active = now
            events.append(self.event_log.append(room_id, EventType.DRAWING_SUBMITTED, {"playerId": player_id}))

            players = self.store.players_in_room(room_id)
            all_submitted = all(p.has_submitted for p in players)
            round_number = room.round_number
            if all_submitted:
                events.append(self._enter_scoring(room, "all_submitted"))
            logger.info(
                f"[ROUND] Room {room_id}: {sum(p.has_submitted for p in players)}/{len(players)} submitted"
            )

        await self.event_log.publish(events)
        if not all_submitted:
            return {"allSubmitted": False}

        # 请求被取消时评分任务继续执行
        task = self._spawn(self._run_scoring(room_id, round_number))
        outcome = await asyncio.shield(task)
        return {"allSubmitted": True, **outcome}

    async def score_drawings(self, room_id: str) -> Dict[str, Any]:
        """对处于 scoring 状态的房间执行当前回合评分"""
        room = self._require_room(room_id)
        return await self._run_scoring(room_id, room.round_number)

    async def _run_scoring(self, room_id: str, round_number: int) -> Dict[str, Any]:
        lock = self._locks.get(room_id)
        if lock is None:
            logger.info(f"[ROUND] Scoring for room {room_id} round {round_number} skipped, room gone")
            return {}
        async with lock:
            room = self.store.get_room(room_id)
            if room is None or room.status != RoomStatus.SCORING or room.round_number != round_number:
                logger.info(f"[ROUND] Scoring for room {room_id} round {round_number} skipped")
                return {}
            keyword = room.current_keyword or ""
            judge_model = room.judge_model
            members = {p.id for p in self.store.players_in_room(room_id)}
            submissions = [
                DrawingSubmission(
                    player_id=d.player_id,
                    image_data=d.canvas_data,
                    timestamp=int(d.submitted_at.timestamp() * 1000),
                )
                for d in self.store.drawings_for(room_id, round_number)
                if d.player_id in members
            ]

        evaluation, failed_reason = await self._evaluate(judge_model, submissions, keyword)

        events: List[GameEvent] = []
        lock = self._locks.get(room_id)
        if lock is None:
            logger.warning(f"[ROUND] Room {room_id} destroyed during scoring, result dropped")
            return {}
        async with lock:
            room = self.store.get_room(room_id)
            if room is None or room.status != RoomStatus.SCORING or room.round_number != round_number:
                logger.warning(f"[ROUND] Room {room_id} changed during scoring, result dropped")
                return {}

            if failed_reason:
                events.append(self.event_log.append(room_id, EventType.AI_EVALUATION_FAILED, {
                    "reason": failed_reason,
                    "roundNumber": round_number,
                }))

            drawings = {d.player_id: d for d in self.store.drawings_for(room_id, round_number)}
            scores: Dict[str, int] = {}
            for ranking in evaluation.rankings:
                drawing = drawings.get(ranking.player_id)
                if drawing is not None and drawing.score is None:
                    drawing.score = ranking.score
                player = self.store.get_player(ranking.player_id)
                if player is not None and player.room_id == room_id:
                    player.score += ranking.score
                    scores[player.id] = ranking.score

            # 分数写入完成后再切换状态
            room.status = RoomStatus.FINISHED
            outcome = {
                "roundNumber": round_number,
                "scores": scores,
                "winner": self.get_winner(room_id),
                "evaluation": evaluation.to_payload(),
            }
            events.append(self.event_log.append(room_id, EventType.ROUND_COMPLETED, outcome))

        await self.event_log.publish(events)
        logger.info(f"[ROUND] Room {room_id} round {round_number} finished: {scores}")
        return outcome

    async def _evaluate(self, judge_model: JudgeModel, submissions: List[DrawingSubmission], keyword: str):
        if not submissions:
            return EvaluationResult(summary="No drawings were submitted this round."), None

        drawn, empty = split_by_content(submissions, self.min_canvas_length)
        if not drawn:
            return placeholder_evaluation(submissions), None

        judge = self.judge_factory(judge_model)
        evaluation, failed_reason = await evaluate_with_retry(judge, drawn, keyword, sleep=self.judge_sleep)
        return append_unranked(evaluation, empty), failed_reason

    def get_winner(self, room_id: str) -> Optional[str]:
        """累计分最高者；同分时最早加入者胜出"""
        players = self.store.players_in_room(room_id)
        if not players:
            return None
        return max(players, key=lambda p: p.score).id

    # ------------------------------------------------------------------
    # liveness
    # ------------------------------------------------------------------

    async def heartbeat(self, room_id: str, player_id: str) -> Dict[str, Any]:
        self._require_fields(roomId=room_id, playerId=player_id)
        room = self._require_room(room_id)
        player = self._require_member(room_id, player_id)
        now = self.clock()
        player.last_active = now

        host = self.store.get_player(room.host_id)
        if host is not None and host.id != player_id:
            idle = (now - host.last_active).total_seconds()
            if idle > settings.HOST_INACTIVE_WARNING:
                logger.warning(f"[LIVENESS] Host {host.id} of room {room_id} inactive for {idle:.0f}s")

        return {"success": True, "isHost": player.is_host}

    async def evict_if_inactive(self, player_id: str, threshold_seconds: float) -> bool:
        """
        在房间锁内重新检查 last_active 后再移除，避免误踢刚刚发送心跳的玩家
        """
        player = self.store.get_player(player_id)
        if player is None:
            return False
        room_id = player.room_id
        events: List[GameEvent] = []
        lock = self._locks.get(room_id)
        if lock is None:
            return False

        async with lock:
            player = self.store.get_player(player_id)
            if player is None or player.room_id != room_id or self.store.get_room(room_id) is None:
                return False
            idle = (self.clock() - player.last_active).total_seconds()
            if idle <= threshold_seconds:
                return False
            logger.info(f"[LIVENESS] Evicting {player_id} from room {room_id} after {idle:.0f}s")
            outcome = self._leave_locked(room_id, player, "inactive", events)

        self._forget_lock(room_id)
        await self._after_leave(room_id, outcome, events)
        return True

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_snapshot(self, room_id: str) -> Dict[str, Any]:
        return self._snapshot(self._require_room(room_id))

    def get_results(self, room_id: str) -> Dict[str, Any]:
        room = self._require_room(room_id)
        completed = self.event_log.latest(room_id, EventType.ROUND_COMPLETED)
        evaluation = completed.event_data.get("evaluation") if completed and completed.event_data else None
        return {
            **self._snapshot(room),
            "scores": {p.id: p.score for p in self.store.players_in_room(room_id)},
            "winner": self.get_winner(room_id),
            "evaluation": evaluation,
        }

    def catch_up(self, room_id: str, last_event_id: int = 0) -> Dict[str, Any]:
        """返回快照和 id > last_event_id 的事件（按 id 升序）"""
        room = self._require_room(room_id)
        events = self.event_log.events_since(room_id, last_event_id)
        return {
            **self._snapshot(room),
            "events": [e.model_dump(mode="json") for e in events],
            "lastEventId": events[-1].id if events else last_event_id,
        }

    def get_drawings(self, room_id: str, round_number: Optional[int] = None,
                     include_canvas: bool = False) -> List[Dict[str, Any]]:
        self._require_room(room_id)
        exclude = None if include_canvas else {"canvas_data"}
        return [d.model_dump(mode="json", exclude=exclude) for d in self.store.drawings_for(room_id, round_number)]

    def get_debug_info(self, room_id: str) -> Dict[str, Any]:
        room = self._require_room(room_id)
        players = self.store.players_in_room(room_id)
        return {
            **self._snapshot(room),
            "hostCount": sum(1 for p in players if p.is_host),
            "timerRunning": self.timer.is_running(room_id),
            "drawings": [
                {**d.model_dump(mode="json", exclude={"canvas_data"}), "canvasLength": len(d.canvas_data)}
                for d in self.store.drawings_for(room_id)
            ],
            "events": [e.model_dump(mode="json") for e in self.event_log.events_since(room_id)],
        }

    def stats(self) -> Dict[str, Any]:
        return {
            **self.store.stats(),
            "active_timers": len(self.timer.tasks),
            "pending_scoring": len(self._tasks),
        }

    async def shutdown(self) -> None:
        await self.timer.cancel_all()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# 全局会话管理器实例
session_manager = SessionManager()


def get_session_manager() -> SessionManager:
    """获取会话管理器实例"""
    return session_manager
