# In-memory store models
from .room import Room, RoomStatus, JudgeModel
from .player import Player
from .drawing import Drawing
from .event import GameEvent, EventType

__all__ = [
    "Room", "RoomStatus", "JudgeModel",
    "Player",
    "Drawing",
    "GameEvent", "EventType",
]
