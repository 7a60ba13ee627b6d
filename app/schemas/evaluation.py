"""
Evaluation schemas
评审输入输出模型
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class DrawingSubmission(BaseModel):
    """提交给评审的单个作品"""
    player_id: str = Field(..., alias="playerId")
    image_data: str = Field("", alias="imageData", description="画布数据（可能带 data URL 头）")
    timestamp: int = Field(0, description="提交时间（毫秒）")

    class Config:
        populate_by_name = True


class Ranking(BaseModel):
    """排名条目"""
    rank: int = Field(..., ge=1)
    player_id: str = Field(..., alias="playerId")
    score: int = Field(..., ge=0, le=100)

    @field_validator("score", mode="before")
    @classmethod
    def round_score(cls, v):
        if isinstance(v, float):
            return int(round(v))
        return v

    class Config:
        populate_by_name = True


class Comment(BaseModel):
    """点评条目"""
    player_id: str = Field(..., alias="playerId")
    comment: str = ""

    class Config:
        populate_by_name = True


class EvaluationResult(BaseModel):
    """
    Judge output.
    rankings 与 comments 必须各自覆盖每个提交者一次
    """
    rankings: List[Ranking] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    summary: Optional[str] = None
    evaluation_criteria: Optional[str] = Field(None, alias="evaluationCriteria")

    class Config:
        populate_by_name = True

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
