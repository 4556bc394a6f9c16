"""
Rubric 实体模型：提取、定位、回放、建议解析共用的数据结构。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .text_normalizer import clean_text, format_points

SHORTCUT_ALPHABET = "QWERTYUIOPASDFGHJKLZXCVBNM"


@dataclass
class MatchWeights:
    """匹配打分权重（经验值，可在 config.yaml 的 matching 段覆盖）。"""

    point_match: int = 50
    group_match: int = 25
    interactive_weight: int = 5
    text_length_cap: int = 1000
    text_length_divisor: int = 100

    @classmethod
    def from_dict(cls, raw: dict | None) -> "MatchWeights":
        weights = cls()
        if not isinstance(raw, dict):
            return weights
        for name in (
            "point_match",
            "group_match",
            "interactive_weight",
            "text_length_cap",
            "text_length_divisor",
        ):
            value = raw.get(name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(weights, name, value)
        if weights.text_length_divisor <= 0:
            weights.text_length_divisor = cls.text_length_divisor
        return weights


@dataclass
class RubricEntity:
    description: str
    point_value: Any = "0.0"
    identity: Optional[str] = None
    group_id: Optional[str] = None
    group_label: Optional[str] = None
    ordinal_position: int = 0
    display_key: str = ""
    source: str = "structured"
    # 弱引用语义：只指向某次快照里的节点，定位失败即清空
    bound_element: Any = field(default=None, repr=False, compare=False)

    @property
    def points_text(self) -> str:
        return format_points(self.point_value)

    @property
    def display_text(self) -> str:
        return clean_text(f"{self.points_text} {self.description}")

    @property
    def is_grouped(self) -> bool:
        return bool(self.group_id)

    def invalidate(self) -> None:
        self.bound_element = None

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "description": self.description,
            "points": self.points_text,
            "text": self.display_text,
            "group_id": self.group_id,
            "group_label": self.group_label,
            "position": self.ordinal_position,
            "key": self.display_key,
            "source": self.source,
        }


@dataclass
class ResolvedElement:
    """一次回放内有效的定位结果，不做持久化。"""

    entity: RubricEntity
    node: Any
    xpath: str
    region_id: Optional[str] = None


@dataclass
class SuggestionReference:
    entity_index: int
    reason: str = ""

    def to_dict(self) -> dict:
        return {"index": self.entity_index, "reason": self.reason}
