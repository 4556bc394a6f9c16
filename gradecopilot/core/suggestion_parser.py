"""
模型输出解析：把自由文本（可能是 JSON，也可能夹杂说明文字）转换为去重后的 SuggestionReference 列表。

- 先整体 json.loads；失败则优先取带 items 列表的第一个 {...}，再找第一个合法的 [...]，最后退回任意 {...}
- 支持裸数组或 {"items": [...]}；元素可以是数字（1-based）、字符串、或 {index|text, reason}
- 越界 / 非整数 / NaN / 重复的 index 丢弃，先出现者优先

解析函数是全函数：任何异常输入都只得到空列表。
"""

from __future__ import annotations

import json
import math
from typing import Any, Optional

from .rubric_entity import RubricEntity, SuggestionReference

_decoder = json.JSONDecoder()


def _try_load(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def _first_embedded(text: str, opener: str, expected: type, accept=None) -> Any:
    start = text.find(opener)
    while start != -1:
        try:
            value, _end = _decoder.raw_decode(text, start)
        except (ValueError, RecursionError):
            value = None
        if isinstance(value, expected) and (accept is None or accept(value)):
            return value
        start = text.find(opener, start + 1)
    return None


def _has_items(value: dict) -> bool:
    return isinstance(value.get("items"), list)


def load_model_json(raw_text: str | None) -> Any:
    text = raw_text or ""
    data = _try_load(text)
    if data is not None:
        return data
    with_items = _first_embedded(text, "{", dict, _has_items)
    if with_items is not None:
        return with_items
    embedded = _first_embedded(text, "[", list)
    if embedded is not None:
        return embedded
    return _first_embedded(text, "{", dict)


def match_index_from_text(text: str, entities: list[RubricEntity]) -> int:
    """双向包含匹配，得分 = 匹配长度 / 较长文本长度；同分取先出现者。"""
    needle = (text or "").lower()
    if not needle:
        return -1
    best_index = -1
    best_score = 0.0
    for index, entity in enumerate(entities):
        hay = entity.display_text.lower()
        if not hay:
            continue
        if needle in hay:
            score = len(needle) / len(hay)
        elif hay in needle:
            score = len(hay) / len(needle)
        else:
            continue
        if score > best_score:
            best_score = score
            best_index = index
    return best_index


def _one_based(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value) or not value.is_integer():
            return None
        value = int(value)
    return value - 1


def _entry_index(entry: Any, entities: list[RubricEntity]) -> tuple[Optional[int], str]:
    if isinstance(entry, (int, float)) and not isinstance(entry, bool):
        return _one_based(entry), ""
    if isinstance(entry, str):
        return match_index_from_text(entry, entities), ""
    if isinstance(entry, dict):
        reason = entry.get("reason")
        reason_text = reason if isinstance(reason, str) else ("" if reason is None else str(reason))
        raw_index = entry.get("index")
        if isinstance(raw_index, (int, float)) and not isinstance(raw_index, bool):
            return _one_based(raw_index), reason_text
        text = entry.get("text")
        return match_index_from_text(text if isinstance(text, str) else "", entities), reason_text
    return None, ""


def parse_suggestions(raw_text: str | None, entities: list[RubricEntity]) -> list[SuggestionReference]:
    data = load_model_json(raw_text)
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        return []

    results: list[SuggestionReference] = []
    seen: set[int] = set()
    for entry in data:
        index, reason = _entry_index(entry, entities)
        if index is None or index < 0 or index >= len(entities) or index in seen:
            continue
        seen.add(index)
        results.append(SuggestionReference(entity_index=index, reason=reason))
    return results
