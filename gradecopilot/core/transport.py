"""
LLM 调用运行时

职责：
- 构建 OpenAI 兼容的多模态 chat 消息（文本 + 截图）
- 单次调用，不做自动重试；错误整理为一条可读信息
- 返回结构化结果供调用方决定后续状态
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from openai import OpenAI

DEFAULT_ENDPOINT = "http://localhost:11434/v1/chat/completions"
DEFAULT_MODEL = "qwen2.5:7b-instruct"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 512
REQUEST_TIMEOUT_SECONDS = 120.0


@dataclass
class LLMCallResult:
    ok: bool
    raw: str = ""
    model: str = ""
    error_summary: str | None = None
    error_code: str | None = None


@dataclass
class SuggestionRequest:
    system_prompt: str
    user_prompt: str
    images: list[str] = field(default_factory=list)


def build_messages(request: SuggestionRequest) -> list[dict]:
    content: list[dict] = [{"type": "text", "text": request.user_prompt}]
    for url in request.images:
        content.append({"type": "image_url", "image_url": {"url": url}})
    return [
        {"role": "system", "content": request.system_prompt},
        {"role": "user", "content": content},
    ]


def normalize_base_url(endpoint: str | None) -> str:
    """OpenAI SDK 需要 base_url（…/v1），配置里常写的是完整的 chat/completions 地址。"""
    url = (endpoint or DEFAULT_ENDPOINT).strip().rstrip("/")
    suffix = "/chat/completions"
    if url.endswith(suffix):
        url = url[: -len(suffix)]
    return url


def create_client(settings: dict | None) -> OpenAI:
    llm_cfg = (settings or {}).get("llm", {}) or {}
    return OpenAI(
        base_url=normalize_base_url(llm_cfg.get("endpoint")),
        # 本地 Ollama 等服务不校验 key，但 SDK 要求非空
        api_key=llm_cfg.get("api_key") or "not-needed",
        max_retries=0,
        timeout=REQUEST_TIMEOUT_SECONDS,
    )


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def response_content(completion: Any) -> str:
    choices = _field(completion, "choices")
    if not isinstance(choices, (list, tuple)) or not choices:
        return ""
    content = _field(_field(choices[0], "message"), "content")
    if isinstance(content, str) and content.strip():
        return content
    return ""


def request_completion(
    *,
    client,
    model: str,
    request: SuggestionRequest,
    temperature: float = DEFAULT_TEMPERATURE,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    on_log: Optional[Callable[[str, str], None]] = None,
) -> LLMCallResult:
    """
    调用一次模型。
    - 成功：raw 为 choices[0].message.content（可能为空字符串，由调用方判定）
    - 失败：error_code="transport_failed"，不重试
    """

    def _log(level: str, message: str) -> None:
        if on_log:
            on_log(level, message)

    try:
        completion = client.chat.completions.create(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            messages=build_messages(request),
        )
    except Exception as exc:
        _log("error", f"❌ 模型 {model} 调用失败: {exc}")
        return LLMCallResult(
            ok=False,
            model=model,
            error_summary=f"AI request failed: {exc}",
            error_code="transport_failed",
        )

    raw = response_content(completion)
    _log("info", f"✓ 模型 {model} 返回 {len(raw)} 字符")
    return LLMCallResult(ok=True, raw=raw, model=model)
