"""
Rubric 容器发现与手动选取。

职责：
- 在松散的 rubric 相关属性候选中打分，选出最像 rubric 面板的容器
- 手动选取流程：从操作员点中的节点向上找最佳祖先，并生成可复用的 selector
"""

from __future__ import annotations

from typing import Optional

from .page_tree import INTERACTIVE_SELECTOR, PageTree, css_string
from .rubric_entity import MatchWeights
from .text_normalizer import clean_text

CONTAINER_CANDIDATE_SELECTOR = "[class*='rubric'], [id*='rubric'], [data-qa*='rubric']"


def score_container(tree: PageTree, node, weights: MatchWeights) -> float:
    interactive = len(tree.query_all(INTERACTIVE_SELECTOR, node))
    text_length = len(clean_text(node.text_content()))
    capped = min(text_length, weights.text_length_cap)
    return interactive * weights.interactive_weight + capped / weights.text_length_divisor


def find_rubric_container(
    tree: PageTree,
    preferred_selector: Optional[str] = None,
    weights: Optional[MatchWeights] = None,
):
    """手动记住的 selector 仍能命中时优先；否则取得分最高的候选（可能为 None）。"""
    weights = weights or MatchWeights()
    if preferred_selector:
        preferred = tree.query(preferred_selector)
        if preferred is not None:
            return preferred

    best = None
    best_score = 0.0
    for candidate in tree.query_all(CONTAINER_CANDIDATE_SELECTOR):
        score = score_container(tree, candidate, weights)
        if score > best_score:
            best_score = score
            best = candidate
    return best


def choose_container_from_element(
    tree: PageTree,
    start,
    weights: Optional[MatchWeights] = None,
):
    weights = weights or MatchWeights()
    body = tree.body
    best = None
    best_score = 0.0
    current = start
    while current is not None and current is not body:
        if isinstance(current.tag, str):
            score = score_container(tree, current, weights)
            if score > best_score:
                best_score = score
                best = current
        current = current.getparent()
    return best


def build_selector(tree: PageTree, node) -> str:
    if node is None or not isinstance(node.tag, str):
        return ""
    if node.get("id"):
        return f"[id={css_string(node.get('id'))}]"
    if node.get("data-qa"):
        return f"[data-qa={css_string(node.get('data-qa'))}]"

    body = tree.body
    parts: list[str] = []
    current = node
    while current is not None and current is not body:
        parent = current.getparent()
        if parent is None:
            break
        siblings = [child for child in parent if child.tag == current.tag]
        parts.insert(0, f"{current.tag}:nth-of-type({siblings.index(current) + 1})")
        current = parent
    if not parts:
        return ""
    if current is body:
        parts.insert(0, "body")
    return " > ".join(parts)
