"""
页面树快照：把 Playwright 页面 HTML 解析为 lxml 树，供提取/定位使用。

职责：
- CSS 查询、matches / closest 等 DOM 风格工具
- 为节点生成绝对 XPath，回到 live 页面时用 `xpath=` locator 定位同一节点
- 解析失败时返回空树，保证调用方不崩溃
"""

from __future__ import annotations

from functools import lru_cache
from typing import Iterator

from cssselect import HTMLTranslator, SelectorError
from lxml import etree, html
from lxml.cssselect import CSSSelector

from .text_normalizer import clean_text

EMPTY_DOCUMENT = "<html><head></head><body></body></html>"

# 与宿主页面“可点击”约定一致
CLICKABLE_SELECTOR = (
    "button, [role='button'], label, input[type='checkbox'], input[type='radio']"
)
INTERACTIVE_SELECTOR = (
    "button, [role='button'], input[type='checkbox'], input[type='radio']"
)

_translator = HTMLTranslator()


@lru_cache(maxsize=256)
def _compiled_query(css: str) -> CSSSelector:
    return CSSSelector(css, translator="html")


@lru_cache(maxsize=256)
def _compiled_self_match(css: str) -> etree.XPath:
    return etree.XPath(_translator.css_to_xpath(css, prefix="self::"))


def css_string(value: str) -> str:
    """把任意值转成 CSS 属性选择器里的双引号字符串。"""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class PageTree:
    """某一时刻页面 DOM 的只读快照。"""

    def __init__(self, root: html.HtmlElement) -> None:
        self.root = root

    @classmethod
    def from_html(cls, markup: str | None) -> "PageTree":
        text = markup or ""
        if not text.strip():
            return cls(html.document_fromstring(EMPTY_DOCUMENT))
        try:
            return cls(html.document_fromstring(text))
        except ValueError:
            # 带 encoding 声明的字符串需要按 bytes 解析
            try:
                return cls(html.document_fromstring(text.encode("utf-8")))
            except (etree.ParserError, ValueError):
                return cls(html.document_fromstring(EMPTY_DOCUMENT))
        except etree.ParserError:
            return cls(html.document_fromstring(EMPTY_DOCUMENT))

    @classmethod
    def from_page(cls, page) -> "PageTree":
        try:
            return cls.from_html(page.content())
        except Exception:
            return cls.from_html("")

    @property
    def body(self) -> html.HtmlElement:
        body = self.root.find("body")
        return body if body is not None else self.root

    def query_all(self, css: str, scope=None) -> list:
        base = self.root if scope is None else scope
        try:
            selector = _compiled_query(css)
        except SelectorError:
            return []
        return [el for el in selector(base) if el is not base]

    def query(self, css: str, scope=None):
        found = self.query_all(css, scope)
        return found[0] if found else None

    def matches(self, node, css: str) -> bool:
        if node is None or not isinstance(node.tag, str):
            return False
        try:
            return bool(_compiled_self_match(css)(node))
        except SelectorError:
            return False

    def closest(self, node, css: str):
        current = node
        while current is not None:
            if self.matches(current, css):
                return current
            current = current.getparent()
        return None

    def by_id(self, element_id: str | None):
        if not element_id:
            return None
        found = self.root.xpath("//*[@id=$value]", value=element_id)
        return found[0] if found else None

    def iter_elements(self, scope=None) -> Iterator:
        base = self.root if scope is None else scope
        for el in base.iter(etree.Element):
            if el is base:
                continue
            yield el

    def owns(self, node) -> bool:
        if node is None:
            return False
        try:
            return node.getroottree().getroot() is self.root
        except AttributeError:
            return False

    def path_of(self, node) -> str:
        return node.getroottree().getpath(node)

    def text_of(self, node) -> str:
        """节点的可读文本；input 优先取其 label。"""
        if node is None:
            return ""
        if node.tag == "input":
            label = None
            input_id = node.get("id")
            if input_id:
                label = self.query(f"label[for={css_string(input_id)}]")
            if label is None:
                label = self.closest(node, "label")
            if label is not None:
                return clean_text(label.text_content())
        return clean_text(node.text_content())


def attr(node, name: str) -> str:
    if node is None:
        return ""
    return node.get(name) or ""


def first_present(*nodes):
    """返回第一个非 None 节点（lxml 元素无子节点时为假值，不能用 or 串联）。"""
    for node in nodes:
        if node is not None:
            return node
    return None
