"""
交互回放：在 live 页面上勾选一个 rubric 条目。

职责：
- 分组条目先展开所在分组（aria-expanded="false" 时发送分组点击序列）
- 每次尝试都重新读取页面快照再定位，分组内最多重试 max_retries 次
- 定位成功后向快捷键按钮 / 文本区域 / 行节点依次派发 pointer + mouse 事件

状态：COLLAPSED → EXPANDED → RESOLVED → DONE，或 UNRESOLVED。
状态推进是纯函数，等待全部经由 Scheduler，便于测试。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Protocol

from .element_resolver import (
    ENTRY_SELECTOR,
    ITEM_ROOT_SELECTOR,
    POINTS_AND_DESCRIPTION_SELECTOR,
    ResolutionContext,
    find_by_text,
    resolve_element,
)
from .key_deriver import GROUP_KEY_SELECTOR, find_toggle_button
from .page_tree import PageTree, attr, css_string, first_present
from .rubric_entity import ResolvedElement, RubricEntity
from .text_normalizer import normalize_text

LogFn = Callable[[str, str], None]

CLICK_EVENTS = ("pointerdown", "pointerup", "mousedown", "mouseup", "click")
GROUP_CLICK_EVENTS = ("pointerdown", "mousedown", "mouseup", "click")
ACTION_TIMEOUT_MS = 2000


class Scheduler(Protocol):
    def sleep_ms(self, ms: int) -> None: ...


class PageScheduler:
    """用 page.wait_for_timeout 等待，保持 Playwright 事件循环运转。"""

    def __init__(self, page) -> None:
        self.page = page

    def sleep_ms(self, ms: int) -> None:
        if ms > 0:
            self.page.wait_for_timeout(ms)


class ReplayState(str, Enum):
    COLLAPSED = "collapsed"
    EXPANDED = "expanded"
    RESOLVED = "resolved"
    DONE = "done"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ReplayAttempt:
    state: ReplayState
    attempts_left: int = 0
    region_id: Optional[str] = None
    xpath: Optional[str] = None


def start_attempt(entity: RubricEntity, max_retries: int) -> ReplayAttempt:
    if entity.is_grouped:
        return ReplayAttempt(state=ReplayState.COLLAPSED, attempts_left=max(0, max_retries))
    return ReplayAttempt(state=ReplayState.EXPANDED, attempts_left=0)


def after_expand(attempt: ReplayAttempt, region_id: Optional[str]) -> ReplayAttempt:
    return replace(attempt, state=ReplayState.EXPANDED, region_id=region_id)


def after_resolution(attempt: ReplayAttempt, xpath: Optional[str]) -> ReplayAttempt:
    if xpath:
        return replace(attempt, state=ReplayState.RESOLVED, xpath=xpath)
    if attempt.attempts_left > 0:
        return replace(attempt, attempts_left=attempt.attempts_left - 1)
    return replace(attempt, state=ReplayState.UNRESOLVED)


def after_dispatch(attempt: ReplayAttempt, dispatched: bool) -> ReplayAttempt:
    return replace(attempt, state=ReplayState.DONE if dispatched else ReplayState.UNRESOLVED)


def event_init(event_type: str, pointer_events: bool = True) -> dict:
    if pointer_events and event_type.startswith("pointer"):
        return {"bubbles": True, "cancelable": True, "pointerType": "mouse", "isPrimary": True}
    return {"bubbles": True, "cancelable": True, "detail": 1}


def group_toggle_selectors(group_id: str) -> list[str]:
    gid = str(group_id)
    return [
        f"{GROUP_KEY_SELECTOR}[aria-controls$={css_string(f'rubric-items-group-{gid}')}]",
        f"{GROUP_KEY_SELECTOR}[id$={css_string(f'accordion-header-{gid}')}]",
        f"{GROUP_KEY_SELECTOR}[aria-label*='rubric item group'][aria-label*={css_string(gid)}]",
    ]


def find_group_toggle(tree: PageTree, group_id: str, group_label: Optional[str] = None):
    for selector in group_toggle_selectors(group_id):
        found = tree.query(selector)
        if found is not None:
            return found
    needle = normalize_text(group_label)
    if not needle:
        return None
    for button in tree.query_all(GROUP_KEY_SELECTOR):
        region = tree.by_id(button.get("aria-controls"))
        if region is None:
            continue
        header = tree.by_id(region.get("aria-describedby"))
        if header is None:
            continue
        label_el = first_present(tree.query(".markdownText", header), header)
        if needle in normalize_text(label_el.text_content()):
            return button
    return None


def click_targets(tree: PageTree, node) -> list:
    """快捷键按钮、文本区域、行节点，去重后按此顺序返回。"""
    item_root = tree.closest(node, ITEM_ROOT_SELECTOR)
    candidates = [
        find_toggle_button(tree, node),
        tree.query(POINTS_AND_DESCRIPTION_SELECTOR, item_root) if item_root is not None else None,
        first_present(item_root, tree.closest(node, ENTRY_SELECTOR), node),
    ]
    targets: list = []
    for candidate in candidates:
        if candidate is None or any(candidate is seen for seen in targets):
            continue
        targets.append(candidate)
    return targets


class InteractionReplayer:
    def __init__(
        self,
        page,
        extraction,
        scheduler: Optional[Scheduler] = None,
        log_fn: Optional[LogFn] = None,
        retry_delay_ms: int = 200,
        max_retries: int = 5,
        pointer_events: bool = True,
    ) -> None:
        self.page = page
        self.extraction = extraction
        self.scheduler = scheduler or PageScheduler(page)
        self._log = log_fn or (lambda msg, level="info": None)
        self.retry_delay_ms = max(0, int(retry_delay_ms))
        self.max_retries = max(0, int(max_retries))
        self.pointer_events = pointer_events
        self._ctx: ResolutionContext = extraction.context

    def apply(self, entity: RubricEntity) -> bool:
        attempt = start_attempt(entity, self.max_retries)
        if attempt.state is ReplayState.COLLAPSED:
            attempt = after_expand(attempt, self.expand_group(entity))
            self.scheduler.sleep_ms(self.retry_delay_ms)

        resolved: Optional[ResolvedElement] = None
        while attempt.state is ReplayState.EXPANDED:
            resolved = self._resolve_live(entity, attempt.region_id)
            attempt = after_resolution(attempt, resolved.xpath if resolved else None)
            if attempt.state is ReplayState.EXPANDED:
                self.scheduler.sleep_ms(self.retry_delay_ms)

        if attempt.state is not ReplayState.RESOLVED or resolved is None:
            self._log(f"⚠ 未能在页面上定位 rubric 条目: {entity.display_text}", "warn")
            return False

        attempt = after_dispatch(attempt, self._dispatch(resolved))
        return attempt.state is ReplayState.DONE

    def expand_group(self, entity: RubricEntity) -> Optional[str]:
        """展开实体所在分组，返回分组区域 id（找不到分组按钮时为 None）。"""
        tree = PageTree.from_page(self.page)
        button = find_group_toggle(tree, str(entity.group_id), entity.group_label)
        if button is None:
            self._log(f"⚠ 未找到分组按钮: {entity.group_label or entity.group_id}", "warn")
            return None
        if attr(button, "aria-expanded") == "false":
            locator = self.page.locator(f"xpath={tree.path_of(button)}")
            for event_type in GROUP_CLICK_EVENTS:
                self._fire(locator, event_type, event_init(event_type, pointer_events=False))
        return attr(button, "aria-controls") or None

    def _refresh_context(self) -> ResolutionContext:
        self._ctx = self._ctx.with_tree(PageTree.from_page(self.page))
        return self._ctx

    def _resolve_live(self, entity: RubricEntity, region_id: Optional[str]) -> Optional[ResolvedElement]:
        ctx = self._refresh_context()
        resolved = resolve_element(entity, ctx)
        if resolved is not None or not region_id:
            return resolved
        region = ctx.tree.by_id(region_id)
        node = find_by_text(ctx.tree, entity.description, entity.point_value, region, ctx.weights)
        if node is None:
            return None
        entity.bound_element = node
        return ResolvedElement(entity=entity, node=node, xpath=ctx.tree.path_of(node), region_id=region_id)

    def _fire(self, locator, event_type: str, init: dict) -> bool:
        try:
            locator.dispatch_event(event_type, init, timeout=ACTION_TIMEOUT_MS)
            return True
        except Exception as e:
            self._log(f"⚠ 派发 {event_type} 失败: {e}", "warn")
            return False

    def _dispatch(self, resolved: ResolvedElement) -> bool:
        tree = self._ctx.tree
        try:
            self.page.locator(f"xpath={resolved.xpath}").scroll_into_view_if_needed(
                timeout=ACTION_TIMEOUT_MS
            )
        except Exception:
            pass

        targets = click_targets(tree, resolved.node)
        dispatched = 0
        for target in targets:
            locator = self.page.locator(f"xpath={tree.path_of(target)}")
            try:
                locator.focus(timeout=ACTION_TIMEOUT_MS)
            except Exception:
                pass
            for event_type in CLICK_EVENTS:
                if self._fire(locator, event_type, event_init(event_type, self.pointer_events)):
                    dispatched += 1

        status_target = targets[0] if targets else resolved.node
        self._log(
            f"Clicked (synthetic): {status_target.tag} "
            f"aria-pressed={attr(status_target, 'aria-pressed') or 'n/a'}",
            "info",
        )
        return dispatched > 0
