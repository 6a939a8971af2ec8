# mathdocx/config.py
"""Runtime settings, read once from ``MATHDOCX_*`` environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


def _split_env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings."""

    log_level: str = os.getenv("MATHDOCX_LOG_LEVEL", "INFO")
    host: str = os.getenv("MATHDOCX_HOST", "127.0.0.1")
    port: int = int(os.getenv("MATHDOCX_PORT", "8000"))
    allowed_origins: List[str] = field(
        default_factory=lambda: _split_env_list(
            "MATHDOCX_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        )
    )
    math_font: str = os.getenv("MATHDOCX_MATH_FONT", "Cambria Math")
    code_font: str = os.getenv("MATHDOCX_CODE_FONT", "Consolas")
    # KaTeX copies the source into ``title`` on some builds; longer titles are noise
    max_title_latex_length: int = int(os.getenv("MATHDOCX_MAX_TITLE_LATEX", "5000"))
    export_filename: str = os.getenv("MATHDOCX_EXPORT_FILENAME", "document-export.docx")


settings = Settings()
