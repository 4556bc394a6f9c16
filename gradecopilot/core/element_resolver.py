"""
元素定位：把 RubricEntity 映射到页面快照中的可交互节点。

职责：
- 枚举容器内的结构化 rubric 条目（DomEntry）并与实体打分匹配
- 由精确到模糊的回退链定位节点（id → 分组区域 → 条目 → 分组文本 → 全容器文本 → 位置）
- 以 entity.bound_element 做缓存；缓存失效或定位失败时重新推导

所有缓存都挂在显式的 ResolutionContext 上，生命周期等于一个页面快照。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from .page_tree import CLICKABLE_SELECTOR, PageTree, attr, css_string, first_present
from .rubric_container import find_rubric_container
from .rubric_entity import MatchWeights, ResolvedElement, RubricEntity
from .text_normalizer import clean_text, extract_points, format_points, normalize_text

ENTRY_SELECTOR = ".rubricEntry"
ITEM_KEY_SELECTOR = "button.rubricItem--key"
ITEM_ROOT_SELECTOR = ".rubricItem"
POINTS_AND_DESCRIPTION_SELECTOR = ".rubricItem--pointsAndDescription"
GROUP_REGION_SELECTOR = ".rubricItemGroup--rubricItems"
GROUP_REGION_ID_RE = re.compile(r"rubric-items-group-(\w+)$")
GROUP_SCOPE_SELECTOR = "section, div, li"

IDENTITY_ATTRIBUTES = (
    "data-rubric-item-id",
    "data-rubric-id",
    "data-rubric-entry-id",
    "data-rubric_entry_id",
    "data-id",
)


@dataclass
class DomEntry:
    index: int
    button: Any
    text: str
    points: str
    description: str
    group_label: Optional[str] = None
    group_id: Optional[str] = None


@dataclass
class ResolutionContext:
    """一次提取内共享的定位上下文（页面快照 + 缓存）。"""

    tree: PageTree
    container: Any
    question_id: str = ""
    preferred_selector: Optional[str] = None
    weights: MatchWeights = field(default_factory=MatchWeights)
    # 分组 key 缓存：只在一次渲染（同一快照）内有效
    group_keys: dict[str, str] = field(default_factory=dict)
    # 节点缓存：只对当前快照有效
    entry_cache: dict[str, tuple[Any, list[DomEntry]]] = field(default_factory=dict)

    def with_tree(self, tree: PageTree) -> "ResolutionContext":
        """同一次提取内换用新的页面快照：丢弃该快照上推导出的全部缓存。"""
        container = find_rubric_container(tree, self.preferred_selector, self.weights)
        return replace(
            self,
            tree=tree,
            container=container if container is not None else tree.body,
            group_keys={},
            entry_cache={},
        )


def find_group_label_for_button(tree: PageTree, button) -> Optional[str]:
    if button is None:
        return None
    region = tree.closest(button, GROUP_REGION_SELECTOR)
    if region is None:
        return None
    header = tree.by_id(region.get("aria-describedby"))
    if header is None:
        return None
    desc = first_present(
        tree.query(".rubricField-description", header),
        tree.query(".markdownText", header),
        header,
    )
    return clean_text(desc.text_content()) or None


def find_group_id_for_button(tree: PageTree, button) -> Optional[str]:
    if button is None:
        return None
    region = tree.closest(button, GROUP_REGION_SELECTOR)
    if region is None:
        return None
    match = GROUP_REGION_ID_RE.search(region.get("id") or "")
    return match.group(1) if match else None


def collect_dom_entries(tree: PageTree, scope) -> list[DomEntry]:
    """
    按两种已知结构枚举条目：
    1. .rubricEntry（含 key 按钮 / .rubricField-points / .markdownText）
    2. 仅有 button.rubricItem--key 时，从 .rubricItem 根节点读取分值与描述
    """
    if scope is None:
        return []
    entries: list[DomEntry] = []
    entry_nodes = tree.query_all(ENTRY_SELECTOR, scope)
    if entry_nodes:
        for node in entry_nodes:
            button = tree.query(ITEM_KEY_SELECTOR, node)
            if button is None:
                continue
            points_el = tree.query(".rubricField-points", node)
            desc_el = tree.query(".markdownText", node)
            points = clean_text(points_el.text_content()) if points_el is not None else ""
            desc = clean_text(desc_el.text_content()) if desc_el is not None else ""
            entries.append(
                DomEntry(
                    index=len(entries),
                    button=button,
                    text=clean_text(f"{points} {desc}"),
                    points=points,
                    description=desc,
                    group_label=find_group_label_for_button(tree, button),
                    group_id=find_group_id_for_button(tree, button),
                )
            )
        return entries

    for button in tree.query_all(ITEM_KEY_SELECTOR, scope):
        item_root = first_present(
            tree.closest(button, ITEM_ROOT_SELECTOR),
            tree.closest(button, ENTRY_SELECTOR),
            button.getparent(),
        )
        points_desc = None
        if item_root is not None:
            points_desc = tree.query(POINTS_AND_DESCRIPTION_SELECTOR, item_root)
        source = first_present(points_desc, item_root, button)
        text = clean_text(source.text_content())
        entries.append(
            DomEntry(
                index=len(entries),
                button=button,
                text=text,
                points=extract_points(text),
                description=text,
                group_label=find_group_label_for_button(tree, button),
                group_id=find_group_id_for_button(tree, button),
            )
        )
    return entries


def score_entry(
    entity: RubricEntity,
    entry: DomEntry,
    weights: Optional[MatchWeights] = None,
) -> Optional[float]:
    """描述包含才计分；分值一致加分；分组标签不符直接淘汰。"""
    weights = weights or MatchWeights()
    needle = normalize_text(entity.description)
    if not needle:
        return None
    haystack = normalize_text(entry.description or entry.text)
    if needle not in haystack:
        return None
    score: float = len(needle)
    if entry.points and format_points(entry.points) == entity.points_text:
        score += weights.point_match
    group_needle = normalize_text(entity.group_label)
    if group_needle and entry.group_label:
        if group_needle in normalize_text(entry.group_label):
            score += weights.group_match
        else:
            return None
    return score


def match_dom_entry(
    entity: RubricEntity,
    entries: list[DomEntry],
    weights: Optional[MatchWeights] = None,
) -> Optional[DomEntry]:
    best = None
    best_score = 0.0
    for entry in entries:
        score = score_entry(entity, entry, weights)
        if score is not None and score > best_score:
            best_score = score
            best = entry
    return best


def find_by_text(
    tree: PageTree,
    description: str,
    point_value,
    scope,
    weights: Optional[MatchWeights] = None,
):
    if scope is None or not description:
        return None
    weights = weights or MatchWeights()
    needle = normalize_text(description)
    if not needle:
        return None
    points_needle = format_points(point_value).lower()
    best = None
    best_score = 0.0
    for candidate in tree.query_all(CLICKABLE_SELECTOR, scope):
        text = tree.text_of(candidate).lower()
        if not text or needle not in text:
            continue
        score: float = len(needle)
        if points_needle and points_needle in text:
            score += weights.point_match
        if score > best_score:
            best_score = score
            best = candidate
    return best


def find_by_group_text(tree: PageTree, entity: RubricEntity, scope, weights=None):
    label = normalize_text(entity.group_label)
    if not label or scope is None:
        return None
    for node in tree.iter_elements(scope):
        if label not in normalize_text(node.text_content()):
            continue
        narrowed = first_present(
            tree.closest(node, GROUP_SCOPE_SELECTOR), node.getparent(), scope
        )
        found = find_by_text(tree, entity.description, entity.point_value, narrowed, weights)
        if found is not None:
            return found
    return None


def group_region(ctx: ResolutionContext, group_id: Optional[str]):
    if not group_id:
        return None
    tree = ctx.tree
    selectors = []
    if ctx.question_id:
        exact_id = f"question-{ctx.question_id}-rubric-items-group-{group_id}"
        selectors.append(f"{GROUP_REGION_SELECTOR}[id={css_string(exact_id)}]")
    selectors.append(
        f"{GROUP_REGION_SELECTOR}[id$={css_string(f'rubric-items-group-{group_id}')}]"
    )
    for scope in (ctx.container, None):
        for selector in selectors:
            found = tree.query(selector, scope)
            if found is not None:
                return found
    return None


def entries_for_scope(ctx: ResolutionContext, group_id: Optional[str] = None):
    """返回 (scope 节点, 条目列表)，按 group_id 缓存；无 group_id 时为整个容器。"""
    cache_key = str(group_id or "")
    if cache_key in ctx.entry_cache:
        return ctx.entry_cache[cache_key]
    scope = group_region(ctx, group_id) if group_id else ctx.container
    entries = collect_dom_entries(ctx.tree, scope) if scope is not None else []
    ctx.entry_cache[cache_key] = (scope, entries)
    return scope, entries


def _by_identity(entity: RubricEntity, ctx: ResolutionContext):
    if not entity.identity:
        return None
    for name in IDENTITY_ATTRIBUTES:
        found = ctx.tree.query(f"[{name}={css_string(entity.identity)}]", ctx.container)
        if found is not None:
            return first_present(ctx.tree.closest(found, CLICKABLE_SELECTOR), found)
    return None


def _by_group_region(entity: RubricEntity, ctx: ResolutionContext):
    if not entity.is_grouped:
        return None
    region, entries = entries_for_scope(ctx, entity.group_id)
    if region is None:
        return None
    matched = match_dom_entry(entity, entries, ctx.weights)
    return matched.button if matched else None


def _by_dom_entries(entity: RubricEntity, ctx: ResolutionContext):
    _scope, entries = entries_for_scope(ctx)
    matched = match_dom_entry(entity, entries, ctx.weights)
    return matched.button if matched else None


def _by_group_text(entity: RubricEntity, ctx: ResolutionContext):
    return find_by_group_text(ctx.tree, entity, ctx.container, ctx.weights)


def _by_container_text(entity: RubricEntity, ctx: ResolutionContext):
    return find_by_text(
        ctx.tree, entity.description, entity.point_value, ctx.container, ctx.weights
    )


def _by_group_position(entity: RubricEntity, ctx: ResolutionContext):
    if not entity.is_grouped:
        return None
    region, entries = entries_for_scope(ctx, entity.group_id)
    if region is None:
        return None
    position = entity.ordinal_position
    if 0 <= position < len(entries):
        return entries[position].button
    return None


RESOLUTION_CHAIN: tuple[Callable[[RubricEntity, ResolutionContext], Any], ...] = (
    _by_identity,
    _by_group_region,
    _by_dom_entries,
    _by_group_text,
    _by_container_text,
    _by_group_position,
)


def resolve(entity: RubricEntity, ctx: ResolutionContext):
    """定位实体对应节点；缓存只在属于当前快照时复用，失败即清空。"""
    cached = entity.bound_element
    if cached is not None and ctx.tree.owns(cached):
        return cached
    entity.invalidate()
    for strategy in RESOLUTION_CHAIN:
        node = strategy(entity, ctx)
        if node is not None:
            entity.bound_element = node
            return node
    return None


def resolve_element(entity: RubricEntity, ctx: ResolutionContext) -> Optional[ResolvedElement]:
    node = resolve(entity, ctx)
    if node is None:
        return None
    region_id = None
    if entity.is_grouped:
        region = group_region(ctx, entity.group_id)
        region_id = attr(region, "id") or None
    return ResolvedElement(
        entity=entity,
        node=node,
        xpath=ctx.tree.path_of(node),
        region_id=region_id,
    )


def resolve_all(entities: list[RubricEntity], ctx: ResolutionContext) -> int:
    """预览用：逐个定位，返回命中数量。"""
    return sum(1 for entity in entities if resolve(entity, ctx) is not None)
