"""
Judge capability
评审接口 - 结果校验、确定性兜底、重试与降级
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from app.core.config import settings
from app.core.exceptions import JudgeConfigurationError, JudgeResponseError
from app.schemas.evaluation import Comment, DrawingSubmission, EvaluationResult, Ranking

logger = logging.getLogger(__name__)

FALLBACK_MIN_SCORE = 70
FALLBACK_MAX_SCORE = 100
FALLBACK_STEP = 5

# 无人有效作画时的占位分
PLACEHOLDER_MAX_SCORE = 50
PLACEHOLDER_MIN_SCORE = 10

FALLBACK_COMMENT = (
    "Nice work! The automatic judge was unavailable this round, "
    "so your drawing received a standard score. Keep it up!"
)
EMPTY_COMMENT = "No drawing was made this round."


class Judge(ABC):
    """
    Drawing evaluation backend.
    实现方只负责产出结果；校验、超时与重试由 evaluate_with_retry 负责
    """

    name: str = "judge"

    @abstractmethod
    async def evaluate(self, submissions: Sequence[DrawingSubmission], keyword: str) -> EvaluationResult:
        ...


def fallback_evaluation(submissions: Sequence[DrawingSubmission], keyword: str) -> EvaluationResult:
    """
    Deterministic fallback ranking.
    以题目和玩家ID为种子打乱顺序，分数为 max(70, 100 - 5*名次下标)
    """
    player_ids = sorted(s.player_id for s in submissions)
    rng = random.Random(f"{keyword}|{','.join(player_ids)}")
    ordered = list(player_ids)
    rng.shuffle(ordered)

    rankings = [
        Ranking(
            rank=index + 1,
            player_id=player_id,
            score=max(FALLBACK_MIN_SCORE, FALLBACK_MAX_SCORE - index * FALLBACK_STEP),
        )
        for index, player_id in enumerate(ordered)
    ]
    comments = [Comment(player_id=s.player_id, comment=FALLBACK_COMMENT) for s in submissions]

    return EvaluationResult(
        rankings=rankings,
        comments=comments,
        summary=(
            f"{len(submissions)} player(s) drew '{keyword}' this round. "
            "The judge could not be reached, so a standard ranking was used."
        ),
        evaluation_criteria="Keyword relevance, creativity and completeness (standard scoring).",
    )


def placeholder_evaluation(submissions: Sequence[DrawingSubmission]) -> EvaluationResult:
    """所有作品都为空时的平铺排名，按提交先后给出递减占位分，不调用评审"""
    rankings = [
        Ranking(
            rank=index + 1,
            player_id=s.player_id,
            score=max(PLACEHOLDER_MIN_SCORE, PLACEHOLDER_MAX_SCORE - index * FALLBACK_STEP),
        )
        for index, s in enumerate(submissions)
    ]
    return EvaluationResult(
        rankings=rankings,
        comments=[Comment(player_id=s.player_id, comment=EMPTY_COMMENT) for s in submissions],
        summary="Nobody finished a drawing this round.",
        evaluation_criteria="Placeholder scores by submission order.",
    )


def append_unranked(result: EvaluationResult, empty: Sequence[DrawingSubmission]) -> EvaluationResult:
    """把空白作品以 0 分接在排名末尾，保证每个提交者都有一条记录"""
    next_rank = len(result.rankings) + 1
    for offset, s in enumerate(empty):
        result.rankings.append(Ranking(rank=next_rank + offset, player_id=s.player_id, score=0))
        result.comments.append(Comment(player_id=s.player_id, comment=EMPTY_COMMENT))
    return result


def validate_evaluation(result: EvaluationResult, submissions: Sequence[DrawingSubmission]) -> None:
    """
    Check the judge output against the submission set.
    每人恰好一条排名和一条点评；名次为 1..N 连续；分数随名次不升
    """
    expected = {s.player_id for s in submissions}

    ranked = [r.player_id for r in result.rankings]
    if len(ranked) != len(set(ranked)):
        raise JudgeResponseError("duplicate player in rankings")
    if set(ranked) != expected:
        raise JudgeResponseError(
            f"rankings cover {sorted(set(ranked))}, expected {sorted(expected)}"
        )

    commented = [c.player_id for c in result.comments]
    if len(commented) != len(set(commented)) or set(commented) != expected:
        raise JudgeResponseError("comments must cover every player exactly once")

    ordered = sorted(result.rankings, key=lambda r: r.rank)
    if [r.rank for r in ordered] != list(range(1, len(ordered) + 1)):
        raise JudgeResponseError("ranks are not contiguous from 1")
    for higher, lower in zip(ordered, ordered[1:]):
        if lower.score > higher.score:
            raise JudgeResponseError(
                f"rank {lower.rank} scores {lower.score} above rank {higher.rank} ({higher.score})"
            )

    # 统一按名次排列
    result.rankings = ordered


async def evaluate_with_retry(
    judge: Judge,
    submissions: Sequence[DrawingSubmission],
    keyword: str,
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
    timeout: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Tuple[EvaluationResult, Optional[str]]:
    """
    Call the judge with bounded attempts, falling back on final failure.
    返回 (结果, 失败原因)；失败原因为 None 表示评审成功
    """
    max_retries = max_retries or settings.JUDGE_MAX_RETRIES
    retry_delay = settings.JUDGE_RETRY_DELAY if retry_delay is None else retry_delay
    timeout = timeout or settings.JUDGE_TIMEOUT

    last_error: Optional[str] = None

    for attempt in range(max_retries):
        try:
            logger.info(f"[JUDGE] {judge.name} attempt {attempt + 1}/{max_retries} for {len(submissions)} drawings")
            result = await asyncio.wait_for(judge.evaluate(submissions, keyword), timeout=timeout)
            validate_evaluation(result, submissions)
            logger.info(f"[JUDGE] {judge.name} succeeded on attempt {attempt + 1}")
            return result, None
        except JudgeConfigurationError as e:
            last_error = f"configuration: {e}"
            logger.warning(f"[JUDGE] {judge.name} not configured, skipping retries: {e}")
            break
        except asyncio.TimeoutError:
            last_error = f"timeout after {timeout}s"
            logger.warning(f"[JUDGE] {judge.name} timed out (attempt {attempt + 1})")
        except Exception as e:
            last_error = str(e) or e.__class__.__name__
            logger.warning(f"[JUDGE] {judge.name} failed (attempt {attempt + 1}): {last_error}")

        if attempt < max_retries - 1:
            await sleep(retry_delay * (2 ** attempt))  # Exponential backoff

    logger.error(f"[JUDGE_FALLBACK] {judge.name} gave up after retries: {last_error}")
    return fallback_evaluation(submissions, keyword), last_error


class OfflineJudge(Judge):
    """不访问网络，直接返回确定性兜底结果"""

    name = "offline"

    async def evaluate(self, submissions: Sequence[DrawingSubmission], keyword: str) -> EvaluationResult:
        return fallback_evaluation(submissions, keyword)


def split_by_content(
    submissions: Sequence[DrawingSubmission], min_length: Optional[int] = None
) -> Tuple[List[DrawingSubmission], List[DrawingSubmission]]:
    """按最小内容长度把作品分成 (有效, 空白) 两组"""
    min_length = settings.MIN_CANVAS_DATA_LENGTH if min_length is None else min_length
    drawn = [s for s in submissions if len(s.image_data or "") >= min_length]
    empty = [s for s in submissions if len(s.image_data or "") < min_length]
    return drawn, empty
