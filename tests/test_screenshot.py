from __future__ import annotations

import base64
import io

from PIL import Image

from gradecopilot.core.screenshot import compress_screenshot, to_data_url


def _png(width: int, height: int, mode: str = "RGBA") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color=(10, 20, 30, 255) if mode == "RGBA" else (10, 20, 30)).save(
        buf, format="PNG"
    )
    return buf.getvalue()


def test_compress_caps_width_and_converts_to_jpeg():
    out = compress_screenshot(_png(2560, 1440), max_width=1280, quality=70)
    img = Image.open(io.BytesIO(out))
    assert img.format == "JPEG"
    assert img.size == (1280, 720)


def test_compress_keeps_small_images_size():
    out = compress_screenshot(_png(800, 600, mode="RGB"))
    assert Image.open(io.BytesIO(out)).size == (800, 600)


def test_compress_failure_returns_original():
    logs = []
    raw = b"not an image"
    assert compress_screenshot(raw, log_fn=lambda msg, level: logs.append(level)) == raw
    assert logs == ["warn"]


def test_data_url_mime_follows_bytes():
    png = _png(4, 4)
    assert to_data_url(png).startswith("data:image/png;base64,")
    jpeg = compress_screenshot(png)
    url = to_data_url(jpeg)
    assert url.startswith("data:image/jpeg;base64,")
    assert base64.b64decode(url.split(",", 1)[1]) == jpeg
