"""
截图采集与压缩：可视区域截图 → JPEG → data URL，供多模态模型使用。
"""

from __future__ import annotations

import base64
import io
from typing import Callable, Optional

from PIL import Image

# 截图压缩配置
SCREENSHOT_MAX_WIDTH = 1280  # 最大宽度（像素）
SCREENSHOT_JPEG_QUALITY = 75  # JPEG 质量（0-100）


def capture_viewport(page) -> bytes:
    """只截当前可视区域，和操作员眼前看到的一致。"""
    return page.screenshot(full_page=False, type="png")


def compress_screenshot(
    png_bytes: bytes,
    max_width: int = SCREENSHOT_MAX_WIDTH,
    quality: int = SCREENSHOT_JPEG_QUALITY,
    log_fn: Optional[Callable[[str, str], None]] = None,
) -> bytes:
    """
    压缩截图：PNG → JPEG，限制宽度，降低体积但保证识别质量。
    压缩失败时返回原始字节。
    """
    try:
        img = Image.open(io.BytesIO(png_bytes))

        if max_width and img.width > max_width:
            ratio = max_width / img.width
            new_height = max(1, int(img.height * ratio))
            img = img.resize((max_width, new_height), Image.Resampling.LANCZOS)

        # JPEG 不支持 RGBA / 调色板
        if img.mode != "RGB":
            img = img.convert("RGB")

        output = io.BytesIO()
        img.save(output, format="JPEG", quality=quality, optimize=True)
        return output.getvalue()
    except Exception as e:
        if log_fn:
            log_fn(f"⚠️ 截图压缩失败，使用原图: {e}", "warn")
        return png_bytes


def sniff_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    return "image/jpeg"


def to_data_url(data: bytes) -> str:
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{sniff_mime(data)};base64,{encoded}"
