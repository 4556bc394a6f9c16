"""
快捷键序列与 rubric 预览文本。

序列规则：
- 先输出未分组条目的 key（都能解析为整数时按数值，否则按字典序）
- 再逐组输出 `<分组 key><成员 key...>`，分组按分组 key 排序
- 组内成员按 QWERTY 字母表位置排序（字母表内的在前），否则按 ordinal_position
- 推不出 key 的条目直接略过
"""

from __future__ import annotations

import re
from functools import cmp_to_key
from typing import Iterable, Optional

from .element_resolver import ResolutionContext, resolve
from .key_deriver import GroupContext, derive_key, group_context, group_key
from .rubric_entity import SHORTCUT_ALPHABET, RubricEntity, SuggestionReference

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def leading_int(value: str) -> Optional[int]:
    match = _LEADING_INT_RE.match(value or "")
    return int(match.group(1)) if match else None


def compare_keys(a: str, b: str) -> int:
    a_num, b_num = leading_int(a), leading_int(b)
    if a_num is not None and b_num is not None:
        return (a_num > b_num) - (a_num < b_num)
    a_fold, b_fold = (a.casefold(), a), (b.casefold(), b)
    return (a_fold > b_fold) - (a_fold < b_fold)


def _alphabet_index(key: str) -> int:
    upper = (key or "").upper()
    if len(upper) != 1:
        return -1
    return SHORTCUT_ALPHABET.find(upper)


def compare_members(a: tuple[RubricEntity, str], b: tuple[RubricEntity, str]) -> int:
    a_idx, b_idx = _alphabet_index(a[1]), _alphabet_index(b[1])
    if a_idx != -1 or b_idx != -1:
        if a_idx == -1:
            return 1
        if b_idx == -1:
            return -1
        return a_idx - b_idx
    return a[0].ordinal_position - b[0].ordinal_position


class _KeyResolver:
    """一次渲染内共享的 key 推导（分组上下文按 group_id 缓存）。"""

    def __init__(self, entities: list[RubricEntity], ctx: Optional[ResolutionContext]) -> None:
        self.ctx = ctx
        self._groups: dict[str, GroupContext] = {}
        ungrouped = [entity for entity in entities if not entity.is_grouped]
        self._fallback = {id(entity): str(pos + 1) for pos, entity in enumerate(ungrouped)}

    def group(self, group_id: str) -> GroupContext:
        if group_id not in self._groups:
            if self.ctx is None:
                self._groups[group_id] = GroupContext(group_id=group_id, region=None)
            else:
                self._groups[group_id] = group_context(self.ctx, group_id)
        return self._groups[group_id]

    def item_key(self, entity: RubricEntity) -> str:
        if entity.is_grouped:
            return derive_key(entity, self.group(str(entity.group_id)), self.ctx)
        return derive_key(entity, None, self.ctx) or self._fallback.get(id(entity), "")

    def group_key(self, group_id: str, label: Optional[str]) -> str:
        if self.ctx is None:
            return ""
        return group_key(self.ctx, group_id, label)


def _sorted_members(members: list[RubricEntity], keys: _KeyResolver) -> list[tuple[RubricEntity, str]]:
    keyed = [(entity, keys.item_key(entity)) for entity in members]
    return sorted(keyed, key=cmp_to_key(compare_members))


def build_sequence(
    entities: list[RubricEntity],
    references: Iterable[SuggestionReference],
    ctx: Optional[ResolutionContext] = None,
) -> str:
    references = list(references or [])
    if not entities or not references:
        return ""
    keys = _KeyResolver(entities, ctx)

    ungrouped: list[RubricEntity] = []
    grouped: dict[str, list[RubricEntity]] = {}
    for ref in references:
        if not 0 <= ref.entity_index < len(entities):
            continue
        entity = entities[ref.entity_index]
        if entity.is_grouped:
            grouped.setdefault(str(entity.group_id), []).append(entity)
        else:
            ungrouped.append(entity)

    parts: list[str] = []
    ungrouped_keys = sorted(
        (keys.item_key(entity) for entity in ungrouped),
        key=cmp_to_key(compare_keys),
    )
    parts.extend(key for key in ungrouped_keys if key)

    groups = [
        (gid, keys.group_key(gid, members[0].group_label), members)
        for gid, members in grouped.items()
    ]
    groups.sort(key=cmp_to_key(lambda a, b: compare_keys(a[1], b[1])))
    for gid, gkey, members in groups:
        member_keys = [key for _entity, key in _sorted_members(members, keys) if key]
        if member_keys:
            parts.append(f"{gkey}{''.join(member_keys)}")
    return "".join(parts)


def format_rubric_preview(
    entities: list[RubricEntity],
    references: Iterable[SuggestionReference] = (),
    ctx: Optional[ResolutionContext] = None,
) -> str:
    """渲染给操作员看的 rubric 列表：未分组在前，建议项以 * 标记。"""
    if not entities:
        return "No rubric items found."
    keys = _KeyResolver(entities, ctx)
    suggested = {ref.entity_index for ref in references or []}
    index_of = {id(entity): index for index, entity in enumerate(entities)}

    ungrouped: list[RubricEntity] = []
    grouped: dict[str, list[RubricEntity]] = {}
    for entity in entities:
        if entity.group_label:
            grouped.setdefault(entity.group_label, []).append(entity)
        else:
            ungrouped.append(entity)

    lines: list[str] = []

    def render(title: str, members: list[RubricEntity], numbered: bool) -> None:
        lines.append(title)
        for local_index, (entity, key) in enumerate(_sorted_members(members, keys)):
            prefix = f"{key}. " if key and not numbered else f"{local_index + 1}. "
            marker = "*" if index_of[id(entity)] in suggested else " "
            matched = ctx is not None and resolve(entity, ctx) is not None
            status = "matched on page" if matched else "not matched on page"
            lines.append(f"{marker} {prefix}{entity.display_text} ({status})")

    if ungrouped:
        render("Ungrouped", ungrouped, numbered=True)
    for label, members in grouped.items():
        gid = str(members[0].group_id or "")
        gkey = keys.group_key(gid, label) if gid else ""
        render(f"{gkey}. {label}" if gkey else label, members, numbered=False)
    return "\n".join(lines)
