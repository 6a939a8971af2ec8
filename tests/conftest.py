"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add the project root to the Python path so "mathdocx" and "main" import without installing.
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

M_NS = 'xmlns:m="http://schemas.openxmlformats.org/officeDocument/2006/math"'


def omath(body: str) -> str:
    """An m:oMath fragment with its namespace declared, as the converter emits it."""
    return f'<m:oMath {M_NS}>{body}</m:oMath>'


def run(text: str) -> str:
    return f'<m:r><m:t>{text}</m:t></m:r>'


@pytest.fixture
def canned_converter():
    """Builds a converter stub that returns ``output`` and records its inputs."""
    def make(output):
        calls = []

        def converter(mathml):
            calls.append(mathml)
            return output(mathml) if callable(output) else output

        converter.calls = calls
        return converter
    return make
