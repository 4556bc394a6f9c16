from __future__ import annotations

import io

import pytest
from PIL import Image

from conftest import FakeClient, FakePage, structured_page

from gradecopilot.core.copilot import (
    EMPTY_RESPONSE_ERROR,
    NO_RUBRIC_ERROR,
    NO_SCREENSHOTS_ERROR,
    GradingCopilot,
)


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (64, 48), color=(255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def page():
    p = FakePage(structured_page())
    p.screenshot_bytes = _png()
    return p


def _copilot(page, settings, handler, scheduler=None):
    client = FakeClient(handler)
    logs: list[tuple[str, str]] = []
    copilot = GradingCopilot(
        page,
        settings=settings,
        client=client,
        log_fn=lambda msg, level="info": logs.append((level, msg)),
        scheduler=scheduler,
    )
    return copilot, client, logs


def test_empty_rubric_is_retried_then_reported(test_settings, recording_scheduler):
    page = FakePage("<html><body><p>loading</p></body></html>")
    copilot, client, _ = _copilot(page, test_settings, lambda kw: "[]", recording_scheduler)
    outcome = copilot.request_suggestions()
    assert outcome.ok is False
    assert outcome.error == NO_RUBRIC_ERROR
    assert recording_scheduler.sleeps == [800] * 4
    assert client.chat.completions.calls == []


def test_screenshots_are_required(page, test_settings):
    copilot, client, _ = _copilot(page, test_settings, lambda kw: "[]")
    copilot.refresh_rubric()
    outcome = copilot.request_suggestions()
    assert outcome.error == NO_SCREENSHOTS_ERROR
    assert client.chat.completions.calls == []


def test_suggestions_parse_and_build_key_sequence(page, test_settings):
    raw = 'Sure! {"items": [{"index": 4, "reason": "sign slip"}, {"index": 1, "reason": "right"}]}'
    copilot, client, _ = _copilot(page, test_settings, lambda kw: raw)
    copilot.refresh_rubric()
    assert copilot.capture_screenshot().startswith("data:image/jpeg;base64,")

    outcome = copilot.request_suggestions()
    assert outcome.ok is True
    assert [(r.entity_index, r.reason) for r in outcome.references] == [(3, "sign slip"), (0, "right")]
    assert outcome.key_sequence == "13W"
    assert copilot.screenshots == []

    call = client.chat.completions.calls[0]
    assert call["model"] == "test-vision-model"
    user_content = call["messages"][1]["content"]
    assert user_content[1]["type"] == "image_url"
    assert "4. [Part (a)] -0.5 Arithmetic error" in user_content[0]["text"]


def test_transport_failure_keeps_screenshots(page, test_settings):
    copilot, _client, _ = _copilot(page, test_settings, lambda kw: Exception("connection refused"))
    copilot.refresh_rubric()
    copilot.capture_screenshot()
    outcome = copilot.request_suggestions()
    assert outcome.ok is False
    assert "connection refused" in outcome.error
    assert len(copilot.screenshots) == 1


def test_blank_model_content_is_configuration_error(page, test_settings):
    copilot, _client, _ = _copilot(page, test_settings, lambda kw: "")
    copilot.refresh_rubric()
    copilot.capture_screenshot()
    assert copilot.request_suggestions().error == EMPTY_RESPONSE_ERROR


def test_apply_by_index(page, test_settings, recording_scheduler):
    copilot, _client, _ = _copilot(page, test_settings, lambda kw: "[]", recording_scheduler)
    copilot.refresh_rubric()
    assert copilot.apply(0) is True
    assert page.events
    assert copilot.apply(99) is False


def test_pick_container_remembers_selector(page, test_settings):
    copilot, _client, _ = _copilot(page, test_settings, lambda kw: "[]")
    selector = copilot.pick_container(".rubricItemGroup--rubricItems .rubricEntry")
    assert selector == '[id="rubric-root"]'
    assert copilot.preferred_selector == selector
    assert len(copilot.entities) == 4
    assert copilot.pick_container(".does-not-exist") is None


def test_offline_parse_and_preview(page, test_settings):
    copilot, _client, _ = _copilot(page, test_settings, lambda kw: "[]")
    copilot.refresh_rubric()
    outcome = copilot.outcome_for("[2]")
    assert outcome.to_dict() == {
        "ok": True,
        "suggestions": [{"index": 1, "reason": ""}],
        "key_sequence": "2",
    }
    assert "* 2. +1.0 Shows work (matched on page)" in copilot.preview()
