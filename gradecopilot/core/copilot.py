"""
评分助手会话：把提取、截图、模型调用、建议解析、快捷键序列、回放串成一个流程。

职责：
- 持有当前 rubric 提取结果、待发送截图与上一次建议
- request_suggestions：rubric + 截图 → prompt → 模型 → 解析 → 序列
- apply：按实体下标在页面上回放一次勾选
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import get_matching_weights, get_system_prompt, load_settings
from .element_resolver import ResolutionContext, resolve_all
from .page_tree import PageTree
from .prompt_builder import build_prompt_text
from .replayer import InteractionReplayer, PageScheduler, Scheduler
from .rubric_container import build_selector, choose_container_from_element
from .rubric_entity import RubricEntity, SuggestionReference
from .rubric_extractor import RubricExtraction, extract
from .screenshot import capture_viewport, compress_screenshot, to_data_url
from .sequence_builder import build_sequence, format_rubric_preview
from .suggestion_parser import parse_suggestions
from .transport import SuggestionRequest, create_client, request_completion

LogFn = Callable[[str, str], None]

NO_RUBRIC_ERROR = "No rubric items found."
NO_SCREENSHOTS_ERROR = "No Screenshots Taken"
EMPTY_RESPONSE_ERROR = "AI Configuration Error"


@dataclass
class SuggestionOutcome:
    ok: bool
    references: list[SuggestionReference] = field(default_factory=list)
    key_sequence: str = ""
    raw: str = ""
    error: str | None = None

    def to_dict(self) -> dict:
        data = {
            "ok": self.ok,
            "suggestions": [ref.to_dict() for ref in self.references],
            "key_sequence": self.key_sequence,
        }
        if self.error:
            data["error"] = self.error
        return data


class GradingCopilot:
    def __init__(
        self,
        page,
        settings: Optional[dict] = None,
        client=None,
        log_fn: Optional[LogFn] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.page = page
        self.settings = settings if settings is not None else load_settings()
        self._client = client
        self._log = log_fn or (lambda msg, level="info": None)
        self.scheduler = scheduler or PageScheduler(page)
        self.weights = get_matching_weights(self.settings)
        self.preferred_selector: Optional[str] = None
        self.extraction: Optional[RubricExtraction] = None
        self.screenshots: list[str] = []
        self.last_suggestions: list[SuggestionReference] = []

    @property
    def client(self):
        if self._client is None:
            self._client = create_client(self.settings)
        return self._client

    @property
    def entities(self) -> list[RubricEntity]:
        return self.extraction.entities if self.extraction else []

    def _section(self, name: str) -> dict:
        return self.settings.get(name, {}) or {}

    # ---------- rubric ----------

    def refresh_rubric(self) -> RubricExtraction:
        """重新提取 rubric；旧提取上的缓存与建议一并丢弃。"""
        tree = PageTree.from_page(self.page)
        self.extraction = extract(
            tree,
            preferred_selector=self.preferred_selector,
            weights=self.weights,
        )
        self.last_suggestions = []
        for error in self.extraction.errors:
            self._log(f"⚠ rubric 提取来源异常: {error}", "warn")
        self._log(
            f"📋 rubric 条目 {len(self.extraction.entities)} 个 (来源: {self.extraction.source})"
        )
        return self.extraction

    def wait_for_rubric(self, max_attempts: int = 5, delay_ms: int = 800) -> list[RubricEntity]:
        """页面异步渲染时 rubric 可能暂时为空，间隔重试。"""
        attempts = max(1, int(max_attempts))
        for attempt in range(attempts):
            if self.refresh_rubric().entities:
                return self.entities
            if attempt < attempts - 1:
                self.scheduler.sleep_ms(delay_ms)
        return []

    def pick_container(self, css: str) -> Optional[str]:
        """从操作员指定的节点推出 rubric 容器并记住其 selector。"""
        tree = PageTree.from_page(self.page)
        start = tree.query(css) if css else None
        if start is None:
            return None
        container = choose_container_from_element(tree, start, self.weights)
        selector = build_selector(tree, container) if container is not None else ""
        if not selector:
            return None
        self.preferred_selector = selector
        self._log(f"📌 已选定 rubric 容器: {selector}")
        self.refresh_rubric()
        return selector

    def _live_context(self) -> Optional[ResolutionContext]:
        if self.extraction is None:
            return None
        return self.extraction.context.with_tree(PageTree.from_page(self.page))

    def preview(self) -> str:
        ctx = self._live_context()
        if ctx is not None:
            matched = resolve_all(self.entities, ctx)
            self._log(f"🔎 页面上定位到 {matched}/{len(self.entities)} 个条目")
        return format_rubric_preview(self.entities, self.last_suggestions, ctx)

    # ---------- screenshots ----------

    def capture_screenshot(self) -> Optional[str]:
        shot_cfg = self._section("screenshot")
        try:
            png_bytes = capture_viewport(self.page)
        except Exception as e:
            self._log(f"❌ 截图失败: {e}", "error")
            return None
        compressed = compress_screenshot(
            png_bytes,
            max_width=int(shot_cfg.get("max_width", 1280)),
            quality=int(shot_cfg.get("jpeg_quality", 75)),
            log_fn=self._log,
        )
        data_url = to_data_url(compressed)
        self.screenshots.append(data_url)
        self._log(
            f"📸 截图 #{len(self.screenshots)}: {len(png_bytes) / 1024:.0f}KB → {len(compressed) / 1024:.0f}KB"
        )
        return data_url

    def clear_screenshots(self) -> None:
        self.screenshots.clear()

    # ---------- suggestions ----------

    def outcome_for(self, raw: str) -> SuggestionOutcome:
        """解析一段模型输出并推导快捷键序列。"""
        entities = self.entities
        references = parse_suggestions(raw, entities)
        ctx = self._live_context()
        sequence = build_sequence(entities, references, ctx)
        self.last_suggestions = references
        return SuggestionOutcome(ok=True, references=references, key_sequence=sequence, raw=raw)

    def request_suggestions(self) -> SuggestionOutcome:
        entities = self.entities or self.wait_for_rubric()
        if not entities:
            return SuggestionOutcome(ok=False, error=NO_RUBRIC_ERROR)
        if not self.screenshots:
            return SuggestionOutcome(ok=False, error=NO_SCREENSHOTS_ERROR)

        prompts = self._section("prompts")
        system_prompt, user_prompt = build_prompt_text(
            entities,
            system_prompt=get_system_prompt(self.settings),
            question_text=prompts.get("question_text") or "",
            solution_text=prompts.get("solution_text") or "",
        )
        llm_cfg = self._section("llm")
        result = request_completion(
            client=self.client,
            model=llm_cfg.get("model", ""),
            request=SuggestionRequest(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                images=list(self.screenshots),
            ),
            temperature=float(llm_cfg.get("temperature", 0.2)),
            max_tokens=int(llm_cfg.get("max_tokens", 512)),
            on_log=lambda level, message: self._log(message, level),
        )
        if not result.ok:
            return SuggestionOutcome(ok=False, error=result.error_summary)
        if not result.raw:
            return SuggestionOutcome(ok=False, error=EMPTY_RESPONSE_ERROR)

        outcome = self.outcome_for(result.raw)
        self.clear_screenshots()
        self._log(
            f"🤖 建议 {len(outcome.references)} 项, 快捷键序列: {outcome.key_sequence or '-'}"
        )
        return outcome

    # ---------- replay ----------

    def apply(self, index: int) -> bool:
        entities = self.entities
        if self.extraction is None or not 0 <= index < len(entities):
            return False
        replay_cfg = self._section("replay")
        replayer = InteractionReplayer(
            self.page,
            self.extraction,
            scheduler=self.scheduler,
            log_fn=self._log,
            retry_delay_ms=int(replay_cfg.get("retry_delay_ms", 200)),
            max_retries=int(replay_cfg.get("max_retries", 5)),
            pointer_events=bool(replay_cfg.get("pointer_events", True)),
        )
        return replayer.apply(entities[index])
