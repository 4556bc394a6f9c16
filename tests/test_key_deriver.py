from __future__ import annotations

from conftest import structured_page

from gradecopilot.core.key_deriver import (
    GroupContext,
    derive_key,
    group_context,
    group_key,
    group_toggle_key_map,
    toggle_key_text,
)
from gradecopilot.core.page_tree import PageTree
from gradecopilot.core.rubric_entity import RubricEntity
from gradecopilot.core.rubric_extractor import extract


def test_stored_key_wins():
    entity = RubricEntity(description="x", display_key=" K ")
    assert derive_key(entity) == "K"


def test_group_key_map_then_alphabet_fallback():
    group = GroupContext(group_id="g", region=None, key_map={0: "Z"})
    first = RubricEntity(description="a", group_id="g", ordinal_position=0)
    third = RubricEntity(description="c", group_id="g", ordinal_position=2)
    assert derive_key(first, group) == "Z"
    assert first.display_key == "Z"
    assert derive_key(third, group) == "E"
    # alphabet fallback is not cached on the entity
    assert third.display_key == ""


def test_ungrouped_key_by_entry_correlation():
    extraction = extract(PageTree.from_html(structured_page()))
    entity = extraction.entities[1]
    assert derive_key(entity, None, extraction.context) == "2"
    assert entity.display_key == "2"


def test_group_context_collects_position_keys():
    extraction = extract(PageTree.from_html(structured_page()))
    group = group_context(extraction.context, "10")
    assert group.key_map == {0: "Q", 1: "W"}
    assert derive_key(extraction.entities[3], group, extraction.context) == "W"


def test_observed_key_from_bound_element():
    extraction = extract(PageTree.from_html(structured_page()))
    ctx = extraction.context
    entity = RubricEntity(description="Shows work", point_value=1)
    entity.bound_element = ctx.tree.query_all(".rubricEntry", ctx.container)[1]
    assert derive_key(entity, None, ctx) == "2"


def test_toggle_key_text_from_aria_label():
    tree = PageTree.from_html(
        '<html><body><button aria-label="Toggle rubric item 4"></button></body></html>'
    )
    assert toggle_key_text(tree.query("button")) == "4"


def test_group_key_from_region_header_and_cached():
    extraction = extract(PageTree.from_html(structured_page()))
    ctx = extraction.context
    assert group_key(ctx, "10", "Part (a)") == "3"
    assert ctx.group_keys["10"] == "3"
    ctx.group_keys["10"] = "cached"
    assert group_key(ctx, "10", "Part (a)") == "cached"


def test_group_key_label_scan_fallback():
    tree = PageTree.from_html(
        """<html><body><div class="rubric">
        <div class="rubricItemGroup--row">
          <button class="rubricItemGroup--key">5</button>
          <span class="markdownText">Part (b): integration</span>
        </div>
        </div></body></html>"""
    )
    ctx = extract(tree).context
    assert group_key(ctx, "99", "Part (b)") == "5"
    assert group_key(ctx, "", "Part (b)") == ""


def test_group_toggle_key_map_reads_aria_controls():
    tree = PageTree.from_html(structured_page())
    assert group_toggle_key_map(tree) == {"10": "3"}


def test_empty_group_key_is_not_cached_and_new_snapshot_starts_fresh():
    unrendered = structured_page().replace('aria-expanded="true">3</button>', 'aria-expanded="true"></button>')
    extraction = extract(PageTree.from_html(unrendered))
    ctx = extraction.context
    assert group_key(ctx, "10", "Part (a)") == ""
    assert "10" not in ctx.group_keys

    ctx.group_keys["10"] = "stale"
    live = ctx.with_tree(PageTree.from_html(structured_page()))
    assert live.group_keys == {}
    assert group_key(live, "10", "Part (a)") == "3"
    assert ctx.group_keys == {"10": "stale"}
