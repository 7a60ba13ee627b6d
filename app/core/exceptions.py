"""
Game exceptions
游戏错误类型 - 校验错误、未找到、评审失败与不变量破坏
"""

from typing import Optional


class GameRuleError(ValueError):
    """
    Caller-facing rejection carrying a reason code.
    调用方错误：状态不允许、昵称重复、非房主等，不会修改任何状态
    """

    status_code = 400

    def __init__(self, reason: str, message: Optional[str] = None, status_code: Optional[int] = None):
        self.reason = reason
        self.message = message or reason.replace("_", " ")
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"reason": self.reason, "message": self.message}


class RoomNotFoundError(GameRuleError):
    """房间不存在"""

    status_code = 404

    def __init__(self, room_id: str):
        super().__init__("not_found", f"Room {room_id} not found")
        self.room_id = room_id


class PlayerNotFoundError(GameRuleError):
    """玩家不在房间中"""

    status_code = 404

    def __init__(self, player_id: str, room_id: Optional[str] = None):
        where = f" in room {room_id}" if room_id else ""
        super().__init__("player_not_found", f"Player {player_id} not found{where}")
        self.player_id = player_id


class NotHostError(GameRuleError):
    status_code = 403

    def __init__(self, player_id: str):
        super().__init__("not_host", f"Player {player_id} is not the host")


class HostInvariantError(RuntimeError):
    """
    Host transfer verification failed.
    房主转移后校验失败：房间出现零个或多个房主，必须抛出而不是静默修复
    """


class JudgeError(Exception):
    """评审调用失败（可重试）"""


class JudgeConfigurationError(JudgeError):
    """缺少凭据等配置问题，不重试直接降级"""


class JudgeResponseError(JudgeError):
    """评审返回内容无法解析或不满足约束"""
