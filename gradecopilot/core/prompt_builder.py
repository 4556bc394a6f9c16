"""
Prompt 构建模块

职责：
- 统一构建 system/user prompts
- 让会话编排逻辑与 prompt 文本解耦
"""

from __future__ import annotations

from typing import Optional

from .rubric_entity import RubricEntity

DEFAULT_SYSTEM_PROMPT = (
    "You are a grading assistant. Given rubric items and a student answer image, "
    "pick the best matching rubric item indices. Return JSON only."
)

RESPONSE_CONTRACT = """Return JSON only with this shape:
{
  "items": [
    { "index": 1, "reason": "short reason" }
  ]
}
Use 1-based indices."""


def build_system_prompt(system_prompt: Optional[str] = None) -> str:
    text = (system_prompt or "").strip()
    return text or DEFAULT_SYSTEM_PROMPT


def format_rubric_lines(entities: list[RubricEntity]) -> str:
    lines = []
    for index, entity in enumerate(entities):
        group_prefix = f"[{entity.group_label}] " if entity.group_label else ""
        lines.append(f"{index + 1}. {group_prefix}{entity.display_text}")
    return "\n".join(lines)


def build_user_prompt(
    entities: list[RubricEntity],
    *,
    question_text: str = "",
    solution_text: str = "",
) -> str:
    sections = [f"Rubric items:\n{format_rubric_lines(entities)}"]
    if question_text and question_text.strip():
        sections.append(f"Question:\n{question_text.strip()}")
    if solution_text and solution_text.strip():
        sections.append(f"Reference solution:\n{solution_text.strip()}")
    sections.append("Use the provided screenshot of the student's handwritten answer.")
    sections.append(RESPONSE_CONTRACT)
    return "\n\n".join(sections)


def build_prompt_text(
    entities: list[RubricEntity],
    system_prompt: Optional[str] = None,
    question_text: str = "",
    solution_text: str = "",
) -> tuple[str, str]:
    """返回 (system, user)；system 为空时使用内置默认值。"""
    return (
        build_system_prompt(system_prompt),
        build_user_prompt(
            entities,
            question_text=question_text,
            solution_text=solution_text,
        ),
    )
