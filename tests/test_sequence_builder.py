from __future__ import annotations

from conftest import structured_page

from gradecopilot.core.page_tree import PageTree
from gradecopilot.core.rubric_entity import RubricEntity, SuggestionReference
from gradecopilot.core.rubric_extractor import extract
from gradecopilot.core.sequence_builder import (
    build_sequence,
    compare_keys,
    format_rubric_preview,
)


def _refs(*indices):
    return [SuggestionReference(entity_index=i) for i in indices]


def test_ungrouped_keys_follow_key_order_not_selection_order():
    entities = [
        RubricEntity(description="a", display_key="A"),
        RubricEntity(description="b", display_key="B"),
    ]
    assert build_sequence(entities, _refs(1, 0)) == "AB"


def test_numeric_keys_sort_numerically():
    entities = [
        RubricEntity(description=str(i), display_key=key)
        for i, key in enumerate(["10", "9", "2"])
    ]
    assert build_sequence(entities, _refs(0, 1, 2)) == "2910"


def test_ungrouped_fallback_to_position_among_ungrouped():
    entities = [
        RubricEntity(description="g", group_id="5", ordinal_position=0),
        RubricEntity(description="x"),
        RubricEntity(description="y"),
    ]
    assert build_sequence(entities, _refs(2, 1)) == "12"


def test_group_members_follow_alphabet_order_without_page():
    entities = [
        RubricEntity(description="a", group_id="5", ordinal_position=2),
        RubricEntity(description="b", group_id="5", ordinal_position=0),
    ]
    # no page context: no group key, member keys from the alphabet (Q, E)
    assert build_sequence(entities, _refs(0, 1)) == "QE"


def test_structured_page_sequence_with_group_key():
    extraction = extract(PageTree.from_html(structured_page()))
    sequence = build_sequence(extraction.entities, _refs(3, 0, 2, 1), extraction.context)
    assert sequence == "123QW"


def test_empty_inputs_and_keyless_entities():
    assert build_sequence([], _refs(0)) == ""
    assert build_sequence([RubricEntity(description="a")], []) == ""
    keyless = [RubricEntity(description="a", group_id="g", ordinal_position=99)]
    assert build_sequence(keyless, _refs(0)) == ""


def test_compare_keys():
    assert compare_keys("2", "10") < 0
    assert compare_keys("b", "A") > 0
    assert compare_keys("3a", "3") == 0


def test_preview_lists_ungrouped_first_and_marks_suggestions():
    extraction = extract(PageTree.from_html(structured_page()))
    text = format_rubric_preview(extraction.entities, _refs(2), extraction.context)
    lines = text.splitlines()
    assert lines[0] == "Ungrouped"
    assert lines[1] == "  1. +2.0 Correct final answer (matched on page)"
    assert lines[3] == "3. Part (a)"
    assert lines[4] == "* Q. +1.5 Uses chain rule (matched on page)"
    assert lines[5] == "  W. -0.5 Arithmetic error (matched on page)"


def test_preview_without_entities():
    assert format_rubric_preview([], []) == "No rubric items found."


def test_group_key_rendered_late_is_picked_up_on_next_snapshot():
    unrendered = structured_page().replace('aria-expanded="true">3</button>', 'aria-expanded="true"></button>')
    extraction = extract(PageTree.from_html(unrendered))
    assert build_sequence(extraction.entities, _refs(2), extraction.context) == "Q"

    live = extraction.context.with_tree(PageTree.from_html(structured_page()))
    assert build_sequence(extraction.entities, _refs(2), live) == "3Q"
