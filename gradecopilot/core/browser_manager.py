"""
浏览器管理模块：统一管理 Playwright 浏览器启动、profile 与事件日志。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.sync_api import BrowserContext, Page, sync_playwright

from ..config import load_settings

LogFn = Callable[[str, str], None]

DEFAULT_PROFILE_DIR = "~/.cache/gradecopilot/chrome-profile"


@dataclass
class BrowserSession:
    playwright: Any
    context: BrowserContext
    page: Page

    def close(self) -> None:
        try:
            self.context.close()
        finally:
            try:
                self.playwright.stop()
            except Exception:
                pass


def build_launch_args(browser_cfg: dict) -> dict:
    """把 config.yaml 的 browser 段转换为 launch_persistent_context 参数。"""
    headless = bool(browser_cfg.get("headless", False))
    slow_mo = int(browser_cfg.get("slow_mo", 0) or 0)
    raw_profile_dir = browser_cfg.get("user_data_dir") or DEFAULT_PROFILE_DIR
    viewport = browser_cfg.get("viewport")

    launch_args = {
        "headless": headless,
        "slow_mo": slow_mo if slow_mo > 0 else None,
        "user_data_dir": str(Path(raw_profile_dir).expanduser()),
        "executable_path": browser_cfg.get("executable_path") or None,
        "viewport": viewport if isinstance(viewport, dict) else None,
        "args": list(browser_cfg.get("args") or []),
    }
    # 清理 None 参数
    return {k: v for k, v in launch_args.items() if v is not None}


class BrowserManager:
    """
    管理浏览器生命周期与配置，避免业务流程中重复拼装启动参数。
    """

    def __init__(self, log_fn: Optional[LogFn] = None, settings: Optional[dict] = None) -> None:
        self._log = log_fn or (lambda msg, level="info": None)
        self._settings = settings if settings is not None else load_settings()

    def launch(self) -> BrowserSession:
        """启动持久化浏览器并返回会话。"""
        launch_args = build_launch_args(self._settings.get("browser", {}) or {})

        playwright = sync_playwright().start()
        context = playwright.chromium.launch_persistent_context(**launch_args)
        page = context.pages[0] if context.pages else context.new_page()

        self._attach_basic_listeners(page)
        self._attach_context_listeners(context)
        self._log(f"✓ 浏览器已启动 (profile: {launch_args['user_data_dir']})")

        return BrowserSession(playwright=playwright, context=context, page=page)

    def _attach_basic_listeners(self, page: Page) -> None:
        """采集页面基础错误信息，写入日志便于排查。"""
        try:
            page.on(
                "console",
                lambda msg: self._log(f"[console:{msg.type}] {msg.text}", "warn")
                if msg.type in ("error", "warning")
                else None,
            )
            page.on(
                "pageerror",
                lambda exc: self._log(f"[pageerror] {exc}", "error"),
            )
        except Exception:
            pass

    def _attach_context_listeners(self, context: BrowserContext) -> None:
        try:
            context.on(
                "requestfailed",
                lambda req: self._log(
                    f"[requestfailed] {req.method} {req.url}", "warn"
                ),
            )
        except Exception:
            pass
