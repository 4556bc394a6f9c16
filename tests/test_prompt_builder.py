from gradecopilot.core.prompt_builder import (
    DEFAULT_SYSTEM_PROMPT,
    build_prompt_text,
)
from gradecopilot.core.rubric_entity import RubricEntity


def _entities():
    return [
        RubricEntity(description="Correct final answer", point_value=2),
        RubricEntity(description="Uses chain rule", point_value="1.5", group_id="10", group_label="Part (a)"),
    ]


def test_user_prompt_lists_items_with_one_based_indices():
    system, user = build_prompt_text(_entities())
    assert system == DEFAULT_SYSTEM_PROMPT
    assert user.startswith(
        "Rubric items:\n1. +2.0 Correct final answer\n2. [Part (a)] +1.5 Uses chain rule\n\n"
    )
    assert "Use the provided screenshot of the student's handwritten answer." in user
    assert '"items": [' in user
    assert user.endswith("Use 1-based indices.")


def test_system_prompt_override_and_blank_fallback():
    assert build_prompt_text(_entities(), "Grade strictly.")[0] == "Grade strictly."
    assert build_prompt_text(_entities(), "   ")[0] == DEFAULT_SYSTEM_PROMPT


def test_question_and_solution_sections_are_optional():
    _system, user = build_prompt_text(
        _entities(), question_text="Differentiate sin(x^2).", solution_text="2x cos(x^2)"
    )
    assert "Question:\nDifferentiate sin(x^2)." in user
    assert "Reference solution:\n2x cos(x^2)" in user
    assert user.index("Question:") < user.index("Use the provided screenshot")

    _system, plain = build_prompt_text(_entities())
    assert "Question:" not in plain
    assert "Reference solution:" not in plain
