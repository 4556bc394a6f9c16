"""
文本归一化：所有匹配比较的基础（纯函数，无副作用）。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

POINTS_TOKEN_RE = re.compile(r"[+-]\s*\d+(?:\.\d+)?")
_LEADING_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizedText:
    cleaned: str
    folded: str


def clean_text(value) -> str:
    """折叠空白；非字符串（页面 JSON 里的数字等）先转成文本，None 视为空串。"""
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_text(value: str | None) -> str:
    return clean_text(value).lower()


def normalize(value: str | None) -> NormalizedText:
    cleaned = clean_text(value)
    return NormalizedText(cleaned=cleaned, folded=cleaned.lower())


def parse_leading_number(value) -> float | None:
    """宽松解析数字前缀（"2.0 pts" -> 2.0），失败返回 None。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if number != number else number
    match = _LEADING_NUMBER_RE.match(str(value or ""))
    if not match:
        return None
    return float(match.group(1))


def format_points(value) -> str:
    """
    带符号、保留一位小数：2 -> "+2.0"，"-1.5" -> "-1.5"。
    无法解析时原样返回（None 视为空串），永不抛异常。
    """
    number = parse_leading_number(value)
    if number is None or number in (float("inf"), float("-inf")):
        return "" if value is None else str(value)
    try:
        rounded = Decimal(number).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        rounded = Decimal(f"{number:.1f}")
    if rounded == 0:
        rounded = Decimal("0.0")
    sign = "+" if number >= 0 or rounded == 0 else ""
    return f"{sign}{rounded}"


def extract_points(text: str | None) -> str:
    match = POINTS_TOKEN_RE.search(text or "")
    if not match:
        return ""
    return _WHITESPACE_RE.sub("", match.group(0))
