# Pydantic schemas
from .room import RoomCreate, RoomJoinRequest, RoomLeaveRequest
from .game import HostAction, DrawingSubmit, Heartbeat
from .evaluation import DrawingSubmission, Ranking, Comment, EvaluationResult
from .common import ErrorDetail, WebSocketMessage

__all__ = [
    "RoomCreate", "RoomJoinRequest", "RoomLeaveRequest",
    "HostAction", "DrawingSubmit", "Heartbeat",
    "DrawingSubmission", "Ranking", "Comment", "EvaluationResult",
    "ErrorDetail", "WebSocketMessage",
]
