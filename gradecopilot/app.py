import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import load_settings, public_settings
from .core.browser_manager import BrowserManager, BrowserSession
from .core.copilot import GradingCopilot


def _console_log(msg: str, level: str = "info") -> None:
    print(f"[copilot] [{level.upper()}] {msg}")


# sync Playwright 绑定启动它的线程：所有浏览器操作都在这一个线程上执行
_browser_executor: ThreadPoolExecutor | None = None


def _executor() -> ThreadPoolExecutor:
    global _browser_executor
    if _browser_executor is None:
        _browser_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="browser")
    return _browser_executor


async def _on_browser_thread(fn, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor(), partial(fn, *args))


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _browser_executor
    load_settings()
    yield
    # 关闭仍在运行的浏览器（同一浏览器线程上），再回收线程
    await _on_browser_thread(_close_session)
    if _browser_executor is not None:
        _browser_executor.shutdown(wait=True)
        _browser_executor = None


app = FastAPI(title="Grade Copilot - Rubric Grading Assistant", lifespan=lifespan)

_session: BrowserSession | None = None
_copilot: GradingCopilot | None = None


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _close_session() -> None:
    global _session, _copilot
    if _session is None:
        return
    try:
        _session.close()
    finally:
        _session = None
        _copilot = None


def _rubric_payload(copilot: GradingCopilot) -> dict:
    extraction = copilot.extraction
    return {
        "ok": True,
        "source": extraction.source if extraction else "none",
        "container_selector": copilot.preferred_selector,
        "items": [entity.to_dict() for entity in copilot.entities],
    }


def _open_session(payload: dict) -> dict:
    global _session, _copilot
    if _session is not None:
        return {"ok": False, "error": "session already running"}
    settings = load_settings()
    manager = BrowserManager(log_fn=_console_log, settings=settings)
    _session = manager.launch()
    _copilot = GradingCopilot(_session.page, settings=settings, log_fn=_console_log)
    target = (payload.get("url") or "").strip() or "about:blank"
    try:
        _session.page.goto(target, wait_until="domcontentloaded", timeout=30000)
    except Exception as e:
        _close_session()
        return {"ok": False, "error": f"open page failed: {e}"}
    entities = _copilot.wait_for_rubric(
        max_attempts=int(payload.get("max_attempts", 5)),
        delay_ms=int(payload.get("delay_ms", 800)),
    )
    return {
        "ok": True,
        "message": "session opened",
        "url": _session.page.url,
        "rubric_items": len(entities),
    }


@app.post("/api/session/open")
async def open_session(payload: dict):
    """
    打开评分页面（复用 profile，登录状态由用户自行维护），并提取 rubric。
    """
    return await _on_browser_thread(_open_session, payload)


def _close_if_running() -> dict:
    if _session is None:
        return {"ok": False, "error": "no session"}
    _close_session()
    return {"ok": True, "message": "session closed"}


@app.post("/api/session/close")
async def close_session():
    """关闭评分浏览器窗口。"""
    return await _on_browser_thread(_close_if_running)


@app.get("/api/session/status")
def session_status():
    """查询评分浏览器是否仍在运行。"""
    running = _session is not None
    data = {"ok": True, "running": running}
    if _copilot is not None:
        data["rubric_items"] = len(_copilot.entities)
        data["screenshots"] = len(_copilot.screenshots)
    return data


def _get_rubric(refresh: bool) -> dict:
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    if refresh or _copilot.extraction is None:
        _copilot.refresh_rubric()
    data = _rubric_payload(_copilot)
    data["preview"] = _copilot.preview()
    return data


@app.get("/api/rubric")
async def get_rubric(refresh: bool = False):
    """返回当前 rubric；refresh=true 时重新从页面提取。"""
    return await _on_browser_thread(_get_rubric, refresh)


def _pick_container(payload: dict) -> dict:
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    css = (payload.get("selector") or "").strip()
    if not css:
        return {"ok": False, "error": "selector is required"}
    selector = _copilot.pick_container(css)
    if not selector:
        return {"ok": False, "error": "no rubric container found for selector"}
    return _rubric_payload(_copilot)


@app.post("/api/rubric/pick")
async def pick_rubric_container(payload: dict):
    """手动指定 rubric 容器：传入容器内任一节点的 CSS selector。"""
    return await _on_browser_thread(_pick_container, payload)


def _take_screenshot() -> dict:
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    if _copilot.capture_screenshot() is None:
        return {"ok": False, "error": "Failed to capture screenshot."}
    return {"ok": True, "count": len(_copilot.screenshots)}


@app.post("/api/screenshots")
async def take_screenshot():
    """截取当前可视区域，加入待发送列表。"""
    return await _on_browser_thread(_take_screenshot)


@app.delete("/api/screenshots")
def clear_screenshots():
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    _copilot.clear_screenshots()
    return {"ok": True, "count": 0}


def _suggest() -> dict:
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    outcome = _copilot.request_suggestions()
    data = outcome.to_dict()
    if outcome.ok:
        data["preview"] = _copilot.preview()
    return data


@app.post("/api/suggest")
async def suggest():
    """发送 rubric + 截图给模型，返回建议条目与快捷键序列。"""
    return await _on_browser_thread(_suggest)


def _apply_item(index: int) -> dict:
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    if not 0 <= index < len(_copilot.entities):
        return {"ok": False, "error": "index out of range"}
    applied = _copilot.apply(index)
    if not applied:
        return {"ok": False, "error": "rubric item not found on page"}
    return {"ok": True, "index": index}


@app.post("/api/apply/{index}")
async def apply_item(index: int):
    """在页面上勾选第 index 个 rubric 条目（0-based）。"""
    return await _on_browser_thread(_apply_item, index)


@app.get("/api/settings")
def get_settings():
    """返回当前配置（不含 api_key）。"""
    return {"ok": True, "settings": public_settings(load_settings())}


def _parse_model_output(payload: dict) -> dict:
    if _copilot is None:
        return {"ok": False, "error": "no session"}
    raw = payload.get("raw")
    if not isinstance(raw, str):
        return {"ok": False, "error": "raw is required"}
    return _copilot.outcome_for(raw).to_dict()


@app.post("/api/parse")
async def parse_model_output(payload: dict):
    """离线解析一段模型输出（不调用模型），用于调试 prompt。"""
    return await _on_browser_thread(_parse_model_output, payload)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gradecopilot.app:app", host="127.0.0.1", port=8000, reload=True)
