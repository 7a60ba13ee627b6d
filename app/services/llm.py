"""
LLM judge backends
大模型评审后端 - Gemini / ChatGPT / Claude
使用 httpx 直接发送请求，每次请求一个客户端
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import JudgeConfigurationError, JudgeError, JudgeResponseError
from app.models import JudgeModel
from app.schemas.evaluation import DrawingSubmission, EvaluationResult
from app.services.judge import Judge, OfflineJudge

logger = logging.getLogger(__name__)

# 按顺序尝试：```json 代码块、普通代码块、裸 JSON 对象
JSON_PATTERNS = [
    re.compile(r"```json\s*([\s\S]*?)\s*```"),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
    re.compile(r"(\{[\s\S]*\})"),
]
DATA_URL_HEADER = re.compile(r"^data:image/[a-z]+;base64,")


def strip_data_url(image_data: str) -> str:
    """去掉 data:image/...;base64, 头"""
    return DATA_URL_HEADER.sub("", image_data or "")


def build_prompt(keyword: str, submissions: Sequence[DrawingSubmission]) -> str:
    player_list = "\n".join(f"- Drawing {i + 1}: playerId \"{s.player_id}\"" for i, s in enumerate(submissions))
    return (
        "You are the judge of a drawing party game.\n"
        f"The keyword for this round is \"{keyword}\".\n"
        f"{len(submissions)} drawings follow, in this order:\n"
        f"{player_list}\n\n"
        "Score each drawing from 60 to 100 using these weights:\n"
        "- Keyword relevance (50%)\n"
        "- Creativity (30%)\n"
        "- Completeness (20%)\n\n"
        "Rank the drawings with rank 1 for the highest score. Every playerId must appear exactly once "
        "in rankings and exactly once in comments.\n"
        "Respond with JSON only, in this shape:\n"
        "{\"rankings\": [{\"rank\": 1, \"playerId\": \"...\", \"score\": 95}], "
        "\"comments\": [{\"playerId\": \"...\", \"comment\": \"...\"}], "
        "\"summary\": \"...\", \"evaluationCriteria\": \"...\"}"
    )


def extract_evaluation(text: str) -> EvaluationResult:
    """
    从模型输出中解析评审 JSON
    必须包含 rankings 和 comments 两个数组
    """
    if not text:
        raise JudgeResponseError("empty response")

    for pattern in JSON_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            parsed = json.loads(match.group(1))
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            continue
        if not isinstance(parsed.get("rankings"), list) or not isinstance(parsed.get("comments"), list):
            raise JudgeResponseError("response JSON is missing rankings or comments")
        try:
            return EvaluationResult.model_validate(parsed)
        except ValidationError as e:
            raise JudgeResponseError(f"invalid evaluation shape: {e.error_count()} errors") from e

    raise JudgeResponseError(f"no JSON found in response: {text[:200]}")


class RemoteJudge(Judge):
    """Shared HTTP plumbing for hosted models."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        model: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout or settings.JUDGE_TIMEOUT
        self.transport = transport
        self.temperature = settings.JUDGE_TEMPERATURE
        self.max_tokens = settings.JUDGE_MAX_TOKENS

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _post(self, url: str, body: Dict[str, Any], headers: Dict[str, str],
                    params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        logger.info(f"[LLM_REQUEST] {self.name} model={self.model} url={url}")
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"Content-Type": "application/json", "Accept": "application/json", **headers},
            transport=self.transport,
            follow_redirects=True,
        ) as client:
            response = await client.post(url, json=body, params=params)

        logger.info(f"[LLM_RESPONSE] {self.name} status={response.status_code}")
        if response.status_code != 200:
            error_text = response.text[:200] if response.text else "No response body"
            raise JudgeError(f"HTTP {response.status_code}: {error_text}")
        return response.json()

    async def evaluate(self, submissions: Sequence[DrawingSubmission], keyword: str) -> EvaluationResult:
        if not self.is_configured:
            raise JudgeConfigurationError(f"{self.name} API key is not configured")
        text = await self._complete(build_prompt(keyword, submissions), submissions)
        logger.debug(f"[LLM_RESPONSE] {self.name} content (first 200): {text[:200]}")
        return extract_evaluation(text)

    async def _complete(self, prompt: str, submissions: Sequence[DrawingSubmission]) -> str:
        raise NotImplementedError


class GeminiJudge(RemoteJudge):
    """Google Gemini generateContent"""

    name = "gemini"

    async def _complete(self, prompt: str, submissions: Sequence[DrawingSubmission]) -> str:
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for index, s in enumerate(submissions):
            parts.append({"text": f"Drawing {index + 1} (playerId \"{s.player_id}\"):"})
            parts.append({"inline_data": {"mime_type": "image/png", "data": strip_data_url(s.image_data)}})

        data = await self._post(
            f"{self.base_url}/models/{self.model}:generateContent",
            body={
                "contents": [{"parts": parts}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                },
            },
            headers={},
            params={"key": self.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            raise JudgeResponseError("Gemini returned no candidates")
        content_parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p.get("text", "") for p in content_parts)


class OpenAIJudge(RemoteJudge):
    """OpenAI 兼容 chat completions 接口"""

    name = "chatgpt"

    async def _complete(self, prompt: str, submissions: Sequence[DrawingSubmission]) -> str:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for index, s in enumerate(submissions):
            content.append({"type": "text", "text": f"Drawing {index + 1} (playerId \"{s.player_id}\"):"})
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{strip_data_url(s.image_data)}"},
            })

        data = await self._post(
            f"{self.base_url}/chat/completions",
            body={
                "model": self.model,
                "messages": [{"role": "user", "content": content}],
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        choices = data.get("choices") or []
        if not choices:
            raise JudgeResponseError("chat completion returned no choices")
        return choices[0].get("message", {}).get("content") or ""


class ClaudeJudge(RemoteJudge):
    """Anthropic messages 接口"""

    name = "claude"

    async def _complete(self, prompt: str, submissions: Sequence[DrawingSubmission]) -> str:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for index, s in enumerate(submissions):
            content.append({"type": "text", "text": f"Drawing {index + 1} (playerId \"{s.player_id}\"):"})
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": "image/png", "data": strip_data_url(s.image_data)},
            })

        data = await self._post(
            f"{self.base_url}/messages",
            body={
                "model": self.model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "messages": [{"role": "user", "content": content}],
            },
            headers={"x-api-key": self.api_key, "anthropic-version": settings.ANTHROPIC_VERSION},
        )

        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


def get_judge(model: JudgeModel) -> Judge:
    """按房间的 judge_model 构建评审实例"""
    model = JudgeModel(model)
    if model == JudgeModel.GEMINI:
        return GeminiJudge(settings.GEMINI_API_KEY, settings.GEMINI_BASE_URL, settings.GEMINI_MODEL)
    if model == JudgeModel.CHATGPT:
        return OpenAIJudge(settings.OPENAI_API_KEY, settings.OPENAI_BASE_URL, settings.OPENAI_MODEL)
    if model == JudgeModel.CLAUDE:
        return ClaudeJudge(settings.ANTHROPIC_API_KEY, settings.ANTHROPIC_BASE_URL, settings.ANTHROPIC_MODEL)
    return OfflineJudge()


def judge_status() -> Dict[str, bool]:
    """各评审后端是否已配置凭据"""
    return {
        JudgeModel.GEMINI.value: bool(settings.GEMINI_API_KEY),
        JudgeModel.CHATGPT.value: bool(settings.OPENAI_API_KEY),
        JudgeModel.CLAUDE.value: bool(settings.ANTHROPIC_API_KEY),
        JudgeModel.OFFLINE.value: True,
    }
