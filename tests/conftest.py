from __future__ import annotations

import html
import json

import pytest

GRADER_PROPS = {
    "question": {"id": 77},
    "rubric_items": [
        {"id": 1, "description": "Correct final answer", "weight": "2.0", "position": 0},
        {"id": 2, "description": "Shows work", "weight": 1, "position": 1},
        {"id": 3, "description": "Uses chain rule", "weight": "1.5", "group_id": 10, "position": 0},
        {"id": 4, "description": "Arithmetic error", "weight": -0.5, "group_id": 10, "position": 1},
    ],
    "rubric_item_groups": [{"id": 10, "description": "Part (a)"}],
}


def _entry(key: str, points: str, description: str) -> str:
    return f"""
      <div class="rubricItem">
        <div class="rubricEntry">
          <button class="rubricItem--key" aria-pressed="false">{key}</button>
          <div class="rubricItem--pointsAndDescription">
            <span class="rubricField-points">{points}</span>
            <span class="markdownText">{description}</span>
          </div>
        </div>
      </div>"""


def rubric_panel(expanded: str = "true", group_items: bool = True) -> str:
    items = ""
    if group_items:
        items = _entry("Q", "+1.5", "Uses chain rule") + _entry("W", "-0.5", "Arithmetic error")
    return f"""
    <div class="rubric-panel" id="rubric-root">
      {_entry("1", "+2.0", "Correct final answer")}
      {_entry("2", "+1.0", "Shows work")}
      <div class="rubricItemGroup--row" id="group-header-10">
        <button class="rubricItemGroup--key" id="question-77-accordion-header-10"
                aria-controls="question-77-rubric-items-group-10"
                aria-expanded="{expanded}">3</button>
        <span class="markdownText">Part (a)</span>
      </div>
      <div class="rubricItemGroup--rubricItems" id="question-77-rubric-items-group-10"
           aria-describedby="group-header-10">{items}
      </div>
    </div>"""


def structured_page(props=None, **panel_kwargs) -> str:
    raw = json.dumps(GRADER_PROPS if props is None else props)
    return f"""<html><body>
    <main><p>Student submission</p></main>
    <div data-react-class="SubmissionGrader" data-react-props="{html.escape(raw, quote=True)}"></div>
    {rubric_panel(**panel_kwargs)}
    </body></html>"""


ANNOTATED_PAGE = f"<html><body>{rubric_panel()}</body></html>"

HEURISTIC_PAGE = """<html><body>
<ul class="rubric-list">
  <li><label><input type="checkbox" id="c1"> +2 Correct setup</label></li>
  <li><button type="button">-1 Sign error</button></li>
  <li><button type="button">Add rubric item +1</button></li>
  <li><button type="button">Point adjustment -0.5</button></li>
</ul>
</body></html>"""


class FakeLocator:
    def __init__(self, page, selector: str):
        self.page = page
        self.selector = selector

    def dispatch_event(self, event_type: str, event_init=None, timeout=None):
        if self.selector in self.page.failing_selectors:
            raise RuntimeError("element is not attached to the DOM")
        self.page.events.append((self.selector, event_type, dict(event_init or {})))

    def scroll_into_view_if_needed(self, timeout=None):
        self.page.calls.append(("scroll", self.selector))
        raise RuntimeError("scroll not supported in fake page")

    def focus(self, timeout=None):
        self.page.calls.append(("focus", self.selector))


class FakePage:
    """按调用顺序返回 HTML 快照（最后一个快照一直复用），记录派发的事件。"""

    def __init__(self, *snapshots: str):
        self.snapshots = list(snapshots) or ["<html><body></body></html>"]
        self.content_calls = 0
        self.events: list[tuple[str, str, dict]] = []
        self.calls: list[tuple[str, str]] = []
        self.waits: list[int] = []
        self.failing_selectors: set[str] = set()
        self.url = "https://grading.example.com/courses/1/questions/77/submissions/5/grade"
        self.screenshot_bytes = b""

    def content(self) -> str:
        index = min(self.content_calls, len(self.snapshots) - 1)
        self.content_calls += 1
        return self.snapshots[index]

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    def screenshot(self, **_kwargs) -> bytes:
        return self.screenshot_bytes


class RecordingScheduler:
    def __init__(self):
        self.sleeps: list[int] = []

    def sleep_ms(self, ms: int) -> None:
        self.sleeps.append(ms)


class _FakeMessage:
    def __init__(self, content):
        self.content = content


class _FakeChoice:
    def __init__(self, content):
        self.message = _FakeMessage(content)


class _FakeCompletion:
    def __init__(self, content):
        self.choices = [_FakeChoice(content)]


class _FakeCompletions:
    def __init__(self, handler):
        self._handler = handler
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self._handler(kwargs)
        if isinstance(result, Exception):
            raise result
        return _FakeCompletion(result)


class _FakeChat:
    def __init__(self, handler):
        self.completions = _FakeCompletions(handler)


class FakeClient:
    def __init__(self, handler):
        self.chat = _FakeChat(handler)


@pytest.fixture()
def recording_scheduler():
    return RecordingScheduler()


@pytest.fixture()
def test_settings():
    return {
        "llm": {
            "endpoint": "http://localhost:11434/v1/chat/completions",
            "api_key": "sk-test",
            "model": "test-vision-model",
            "temperature": 0.2,
            "max_tokens": 512,
        },
        "prompts": {"system_prompt": "", "question_text": "", "solution_text": ""},
        "browser": {},
        "screenshot": {"max_width": 1280, "jpeg_quality": 75},
        "replay": {"retry_delay_ms": 200, "max_retries": 5, "pointer_events": True},
        "matching": {},
    }
