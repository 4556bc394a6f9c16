"""
Grade Copilot - rubric grading assistant

包初始化文件。
"""

from __future__ import annotations

from dotenv import find_dotenv, load_dotenv

# Auto-load project .env once on package import.
# This lets local runs pick up OPENAI_API_KEY / GRADECOPILOT_* without exporting them.
load_dotenv(find_dotenv(usecwd=True), override=False)
