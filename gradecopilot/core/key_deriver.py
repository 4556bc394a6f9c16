"""
快捷键推导：确定 rubric 条目 / 分组在宿主 UI 上显示的快捷键。

优先级（条目）：
1. 已观察到的 key（实体上缓存的，或已绑定节点的 toggle 按钮文本）
2. 分组内同位置 key 按钮的文本
3. 固定字母表 QWERTY... 按位置兜底
4. 描述 + 分值与 .rubricEntry 关联得到的 key
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .element_resolver import (
    ENTRY_SELECTOR,
    GROUP_REGION_ID_RE,
    ITEM_KEY_SELECTOR,
    ResolutionContext,
    entries_for_scope,
    group_region,
)
from .page_tree import PageTree
from .rubric_entity import SHORTCUT_ALPHABET, RubricEntity
from .text_normalizer import clean_text, normalize_text

GROUP_KEY_SELECTOR = "button.rubricItemGroup--key"
GROUP_ROW_SELECTOR = ".rubricItemGroup--row"
TOGGLE_ARIA_SELECTOR = "button[aria-label^='Toggle rubric item']"
_TOGGLE_ARIA_RE = re.compile(r"Toggle rubric item\s+(.+)$", re.IGNORECASE)


@dataclass
class GroupContext:
    group_id: str
    region: Any
    entries: list = field(default_factory=list)
    key_map: dict[int, str] = field(default_factory=dict)


def find_toggle_button(tree: PageTree, root):
    if root is None:
        return None
    if tree.matches(root, ".rubricItem--key"):
        return root
    direct = tree.query(ITEM_KEY_SELECTOR, root)
    if direct is not None:
        return direct
    aria_match = tree.query(TOGGLE_ARIA_SELECTOR, root)
    if aria_match is not None:
        return aria_match
    return tree.closest(root, ITEM_KEY_SELECTOR)


def toggle_key_text(button) -> str:
    if button is None:
        return ""
    text = clean_text(button.text_content())
    if text:
        return text
    match = _TOGGLE_ARIA_RE.search(button.get("aria-label") or "")
    return match.group(1).strip() if match else ""


def group_context(ctx: ResolutionContext, group_id) -> GroupContext:
    gid = str(group_id)
    region, entries = entries_for_scope(ctx, gid)
    key_map: dict[int, str] = {}
    for idx, entry in enumerate(entries):
        key_text = toggle_key_text(entry.button)
        if key_text:
            key_map[idx] = key_text
    return GroupContext(group_id=gid, region=region, entries=entries, key_map=key_map)


def _observed_key(entity: RubricEntity, ctx: Optional[ResolutionContext]) -> str:
    if entity.display_key:
        return clean_text(entity.display_key)
    if ctx is None or not ctx.tree.owns(entity.bound_element):
        return ""
    key = toggle_key_text(find_toggle_button(ctx.tree, entity.bound_element))
    if key:
        entity.display_key = key
    return key


def _correlated_key(entity: RubricEntity, ctx: ResolutionContext, scope) -> str:
    tree = ctx.tree
    points_needle = entity.points_text.lower()
    desc_needle = normalize_text(entity.description)
    for entry in tree.query_all(ENTRY_SELECTOR, scope):
        key_text = toggle_key_text(tree.query(ITEM_KEY_SELECTOR, entry))
        if not key_text:
            continue
        points_el = tree.query(".rubricField-points", entry)
        desc_el = tree.query(".markdownText", entry)
        points_text = normalize_text(points_el.text_content() if points_el is not None else "")
        desc_text = normalize_text(desc_el.text_content() if desc_el is not None else "")
        if points_needle in points_text and desc_needle in desc_text:
            return key_text
    return ""


def derive_key(
    entity: RubricEntity,
    group: Optional[GroupContext] = None,
    ctx: Optional[ResolutionContext] = None,
) -> str:
    observed = _observed_key(entity, ctx)
    if observed:
        return observed

    position = entity.ordinal_position
    if group is not None and isinstance(position, int) and position >= 0:
        mapped = group.key_map.get(position)
        if mapped:
            entity.display_key = mapped
            return mapped
        if position < len(SHORTCUT_ALPHABET):
            return SHORTCUT_ALPHABET[position]

    if ctx is None:
        return ""
    scope = group.region if group is not None and group.region is not None else ctx.container
    if scope is None:
        return ""
    key = _correlated_key(entity, ctx, scope)
    if key:
        entity.display_key = key
    return key


def group_toggle_key_map(tree: PageTree) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for button in tree.query_all(GROUP_KEY_SELECTOR):
        match = GROUP_REGION_ID_RE.search(button.get("aria-controls") or "")
        if not match:
            continue
        key = clean_text(button.text_content())
        if key:
            mapping[match.group(1)] = key
    return mapping


def _header_key(ctx: ResolutionContext, group_id: str) -> str:
    tree = ctx.tree
    region = group_region(ctx, group_id)
    if region is None:
        return ""
    header = tree.by_id(region.get("aria-describedby"))
    if header is None:
        return ""
    if tree.matches(header, GROUP_KEY_SELECTOR):
        button = header
    else:
        button = tree.query(GROUP_KEY_SELECTOR, header)
    return clean_text(button.text_content()) if button is not None else ""


def _label_scan_key(tree: PageTree, label: Optional[str]) -> str:
    needle = normalize_text(label)
    if not needle:
        return ""
    for header in tree.query_all(GROUP_ROW_SELECTOR):
        label_el = tree.query(".markdownText", header)
        text = normalize_text(label_el.text_content() if label_el is not None else "")
        if needle not in text:
            continue
        button = tree.query(GROUP_KEY_SELECTOR, header)
        key = clean_text(button.text_content()) if button is not None else ""
        if key:
            return key
    return ""


def group_key(ctx: ResolutionContext, group_id, label: Optional[str] = None) -> str:
    """分组自身 toggle 的快捷键，按 group_id 缓存在当前快照的上下文里；空结果不缓存。"""
    if not group_id:
        return ""
    gid = str(group_id)
    if gid in ctx.group_keys:
        return ctx.group_keys[gid]
    key = (
        _header_key(ctx, gid)
        or group_toggle_key_map(ctx.tree).get(gid, "")
        or _label_scan_key(ctx.tree, label)
    )
    if key:
        ctx.group_keys[gid] = key
    return key
