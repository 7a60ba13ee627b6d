"""
In-memory store
内存存储 - 房间/玩家/作品/事件四张表，按主键寻址
"""

import itertools
import logging
import threading
from typing import Dict, Iterator, List, Optional

from app.models import Room, Player, Drawing, GameEvent

logger = logging.getLogger(__name__)


class Sequence:
    """Process-wide monotonic id generator, safe across threads."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()
        self._last = start - 1

    def next(self) -> int:
        with self._lock:
            self._last = next(self._counter)
            return self._last

    @property
    def last(self) -> int:
        return self._last


class Store:
    """
    Arena-style maps keyed by primary key.
    所有操作都是同步的；房间级互斥由 SessionManager 负责
    """

    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        self.players: Dict[str, Player] = {}
        self.drawings: Dict[int, Drawing] = {}
        self.events: Dict[int, GameEvent] = {}

        self.drawing_ids = Sequence()
        self.event_ids = Sequence()
        self.join_seq = Sequence()

    # ---- rooms ----

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def add_room(self, room: Room) -> Room:
        self.rooms[room.id] = room
        return room

    def delete_room(self, room_id: str) -> bool:
        """级联删除房间下的玩家、作品和事件"""
        room = self.rooms.pop(room_id, None)
        if room is None:
            return False

        for player_id in [p.id for p in self.players.values() if p.room_id == room_id]:
            del self.players[player_id]
        for drawing_id in [d.id for d in self.drawings.values() if d.room_id == room_id]:
            del self.drawings[drawing_id]
        for event_id in [e.id for e in self.events.values() if e.room_id == room_id]:
            del self.events[event_id]

        logger.debug(f"[STORE] Room {room_id} deleted with cascade")
        return True

    # ---- players ----

    def get_player(self, player_id: str) -> Optional[Player]:
        return self.players.get(player_id)

    def add_player(self, player: Player) -> Player:
        player.join_seq = self.join_seq.next()
        self.players[player.id] = player
        return player

    def delete_player(self, player_id: str) -> Optional[Player]:
        return self.players.pop(player_id, None)

    def players_in_room(self, room_id: str) -> List[Player]:
        """按加入顺序返回房间玩家"""
        players = [p for p in self.players.values() if p.room_id == room_id]
        players.sort(key=lambda p: (p.joined_at, p.join_seq))
        return players

    def iter_players(self) -> Iterator[Player]:
        return iter(list(self.players.values()))

    # ---- drawings ----

    def add_drawing(self, **fields) -> Drawing:
        drawing = Drawing(id=self.drawing_ids.next(), **fields)
        self.drawings[drawing.id] = drawing
        return drawing

    def drawings_for(self, room_id: str, round_number: Optional[int] = None) -> List[Drawing]:
        drawings = [
            d for d in self.drawings.values()
            if d.room_id == room_id and (round_number is None or d.round_number == round_number)
        ]
        drawings.sort(key=lambda d: d.id)
        return drawings

    # ---- events ----

    def add_event(self, **fields) -> GameEvent:
        event = GameEvent(id=self.event_ids.next(), **fields)
        self.events[event.id] = event
        return event

    def events_for(self, room_id: str, after_id: int = 0) -> List[GameEvent]:
        events = [e for e in self.events.values() if e.room_id == room_id and e.id > after_id]
        events.sort(key=lambda e: e.id)
        return events

    def stats(self) -> dict:
        return {
            "rooms": len(self.rooms),
            "players": len(self.players),
            "drawings": len(self.drawings),
            "events": len(self.events),
        }
