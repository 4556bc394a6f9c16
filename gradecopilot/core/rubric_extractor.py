"""
Rubric 实体提取：从当前页面快照得到有序的 RubricEntity 列表。

三种来源按顺序尝试，第一个非空结果胜出：
1. structured：SubmissionGrader 节点上嵌入的 data-react-props JSON（可能被双重编码）
2. annotated：.rubricEntry / button.rubricItem--key 两种结构约定
3. heuristic：按带符号分值文本回溯到列表行，过滤非 rubric 的 UI 文案

任何来源的数据异常都只会让该来源返回空列表，不会中断提取。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from html import unescape
from typing import Callable, Optional

from .element_resolver import (
    IDENTITY_ATTRIBUTES,
    ResolutionContext,
    collect_dom_entries,
)
from .key_deriver import toggle_key_text
from .page_tree import CLICKABLE_SELECTOR, PageTree, first_present
from .rubric_container import find_rubric_container
from .rubric_entity import MatchWeights, RubricEntity
from .text_normalizer import (
    POINTS_TOKEN_RE,
    clean_text,
    extract_points,
)

GRADER_PROPS_SELECTOR = "[data-react-class='SubmissionGrader']"
ROW_SELECTOR = "li, tr, [role='listitem'], [class*='rubric'], [data-qa*='rubric']"
NON_CONTENT_TAGS = {"script", "style", "noscript", "template", "head", "title"}

# 非评分项的 rubric 面板控件文案
ROW_DENYLIST = (
    "add rubric item",
    "create group",
    "import",
    "point adjustment",
    "provide comments",
    "rubric settings",
    "grid view",
    "collapse view",
    "grading comment",
)


@dataclass
class RubricExtraction:
    entities: list[RubricEntity]
    context: ResolutionContext
    source: str = "none"
    errors: list[str] = field(default_factory=list)


def decode_grader_props(raw: str | None) -> Optional[dict]:
    """直接解析 → HTML 反转义后解析；字符串结果再解一层。失败返回 None。"""
    if not raw:
        return None
    for candidate in (raw, unescape(raw)):
        try:
            data = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except (ValueError, RecursionError):
                continue
        if isinstance(data, dict):
            return data
    return None


def read_grader_props(tree: PageTree) -> Optional[dict]:
    node = tree.query(GRADER_PROPS_SELECTOR)
    if node is None:
        return None
    return decode_grader_props(node.get("data-react-props"))


def question_id_from_props(props: Optional[dict]) -> str:
    if not props:
        return ""
    question = props.get("question")
    if isinstance(question, dict) and question.get("id") not in (None, ""):
        return str(question["id"])
    return ""


def _optional_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _parse_position(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value >= 0 else None
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed >= 0 else None


class _PartitionSlots:
    """保证 ordinal_position 在同一 group 分区内唯一。"""

    def __init__(self) -> None:
        self._used: dict[str, set[int]] = {}

    def claim(self, group_id: Optional[str], wanted: Optional[int]) -> int:
        used = self._used.setdefault(group_id or "", set())
        if wanted is not None and wanted not in used:
            used.add(wanted)
            return wanted
        slot = 0
        while slot in used:
            slot += 1
        used.add(slot)
        return slot


class _IdentityRegistry:
    def __init__(self) -> None:
        self._seen: set[str] = set()

    def claim(self, value) -> Optional[str]:
        identity = _optional_str(value)
        if identity is None or identity in self._seen:
            return None
        self._seen.add(identity)
        return identity


def entities_from_props(props: Optional[dict]) -> list[RubricEntity]:
    if not props:
        return []
    items = props.get("rubric_items")
    groups = props.get("rubric_item_groups")
    if not isinstance(items, list) or not items:
        return []
    group_labels: dict[str, str] = {}
    for group in groups if isinstance(groups, list) else []:
        if isinstance(group, dict) and group.get("id") not in (None, ""):
            group_labels[str(group["id"])] = clean_text(group.get("description")) or "Group"

    slots = _PartitionSlots()
    identities = _IdentityRegistry()
    entities: list[RubricEntity] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("description"):
            continue
        group_id = _optional_str(item.get("group_id"))
        entities.append(
            RubricEntity(
                identity=identities.claim(item.get("id")),
                description=str(item["description"]),
                point_value=item.get("weight") or "0.0",
                group_id=group_id,
                group_label=group_labels.get(group_id) if group_id else None,
                ordinal_position=slots.claim(group_id, _parse_position(item.get("position"))),
                source="structured",
            )
        )
    return entities


def _identity_of(node) -> Optional[str]:
    current = node
    for _ in range(3):
        if current is None:
            break
        for name in IDENTITY_ATTRIBUTES:
            if current.get(name):
                return current.get(name)
        current = current.getparent()
    return None


def _strip_points(text: str) -> str:
    return clean_text(POINTS_TOKEN_RE.sub(" ", text, count=1))


def _from_structured(ctx: ResolutionContext) -> list[RubricEntity]:
    return entities_from_props(read_grader_props(ctx.tree))


def _from_annotated(ctx: ResolutionContext) -> list[RubricEntity]:
    slots = _PartitionSlots()
    identities = _IdentityRegistry()
    entities: list[RubricEntity] = []
    for entry in collect_dom_entries(ctx.tree, ctx.container):
        if entry.description == entry.text:
            description = _strip_points(entry.text)
        else:
            description = entry.description
        if not description:
            continue
        entities.append(
            RubricEntity(
                identity=identities.claim(_identity_of(entry.button)),
                description=description,
                point_value=entry.points or "0.0",
                group_id=entry.group_id,
                group_label=entry.group_label,
                ordinal_position=slots.claim(entry.group_id, None),
                display_key=toggle_key_text(entry.button),
                source="annotated",
                bound_element=entry.button,
            )
        )
    return entities


def _deepest_point_nodes(tree: PageTree, scope) -> list:
    nodes = []
    for node in tree.iter_elements(scope):
        if node.tag in NON_CONTENT_TAGS:
            continue
        if not POINTS_TOKEN_RE.search(clean_text(node.text_content())):
            continue
        has_matching_child = any(
            isinstance(child.tag, str)
            and child.tag not in NON_CONTENT_TAGS
            and POINTS_TOKEN_RE.search(clean_text(child.text_content()))
            for child in node
        )
        if not has_matching_child:
            nodes.append(node)
    return nodes


def _from_heuristic(ctx: ResolutionContext) -> list[RubricEntity]:
    tree = ctx.tree
    seen: set[str] = set()
    entities: list[RubricEntity] = []
    for node in _deepest_point_nodes(tree, ctx.container):
        row = first_present(tree.closest(node, ROW_SELECTOR), node.getparent())
        if row is None:
            continue
        row_text = clean_text(row.text_content())
        if len(row_text) < 3:
            continue
        lowered = row_text.lower()
        if any(label in lowered for label in ROW_DENYLIST):
            continue
        if lowered in seen:
            continue
        seen.add(lowered)
        description = _strip_points(row_text)
        if not description:
            continue
        clickable = first_present(tree.query(CLICKABLE_SELECTOR, row), row)
        entities.append(
            RubricEntity(
                description=description,
                point_value=extract_points(row_text) or "0.0",
                ordinal_position=len(entities),
                source="heuristic",
                bound_element=clickable,
            )
        )
    return entities


EXTRACTION_STRATEGIES: tuple[tuple[str, Callable[[ResolutionContext], list[RubricEntity]]], ...] = (
    ("structured", _from_structured),
    ("annotated", _from_annotated),
    ("heuristic", _from_heuristic),
)


def extract(
    tree: PageTree,
    *,
    preferred_selector: Optional[str] = None,
    weights: Optional[MatchWeights] = None,
) -> RubricExtraction:
    weights = weights or MatchWeights()
    container = find_rubric_container(tree, preferred_selector, weights)
    ctx = ResolutionContext(
        tree=tree,
        container=container if container is not None else tree.body,
        question_id=question_id_from_props(read_grader_props(tree)),
        preferred_selector=preferred_selector,
        weights=weights,
    )
    errors: list[str] = []
    for source, strategy in EXTRACTION_STRATEGIES:
        try:
            entities = strategy(ctx)
        except (ValueError, TypeError, AttributeError) as exc:
            errors.append(f"{source}: {exc}")
            continue
        if entities:
            return RubricExtraction(entities=entities, context=ctx, source=source, errors=errors)
    return RubricExtraction(entities=[], context=ctx, source="none", errors=errors)


def extract_entities(tree: PageTree, **kwargs) -> list[RubricEntity]:
    return extract(tree, **kwargs).entities
