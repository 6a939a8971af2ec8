# mathdocx/latex_normalizer.py
"""
Text-level rewrites applied to LaTeX before it is regenerated into MathML.

The rewrites are plain regex substitutions, not a parser: nested environments of
the same name are not matched correctly, but environments of different names are
normalized independently because the substitution repeats until nothing changes.
"""
import re
from typing import Optional

# --- 1. 矩阵环境 -> \left ... \right 包裹的 matrix ---
MATRIX_DELIMITERS = {
    'bmatrix': ('[', ']'),
    'pmatrix': ('(', ')'),
    'Bmatrix': ('\\{', '\\}'),
    'vmatrix': ('|', '|'),
    'Vmatrix': ('\\|', '\\|'),
    'smallmatrix': (None, None),
    'cases': ('\\{', '.'),
}

MATRIX_ENV_RE = re.compile(
    r'\\begin\{(bmatrix|pmatrix|Bmatrix|vmatrix|Vmatrix|smallmatrix|cases)(\*?)\}'
    r'(?:\[[^\]]*\])?'
    r'([\s\S]*?)'
    r'\\end\{\1\2\}'
)
MATRIX_MARKER_RE = re.compile(r'\\begin\{(?:[pbBvV]?matrix|smallmatrix|cases|array)\*?\}')

# --- 2. 尺寸、间距与样式命令 ---
SIZING_RE = re.compile(r'\\(?:Bigg|bigg|Big|big)[lrm]?(?![a-zA-Z])\s*')
SPACING_RE = re.compile(r'\\(?:qquad|quad)(?![a-zA-Z])|(?<!\\)\\[,;:]')
NEGATIVE_SPACE_RE = re.compile(r'(?<!\\)\\!')
STYLE_RE = re.compile(r'\\(?:displaystyle|textstyle|scriptstyle|scriptscriptstyle)(?![a-zA-Z])\s*')
FRAC_VARIANT_RE = re.compile(r'\\[dt]frac(?![a-zA-Z])')

OUTER_DELIMITERS = (('$$', '$$'), ('\\[', '\\]'), ('\\(', '\\)'), ('$', '$'))

MAX_REWRITE_ROUNDS = 16


def strip_math_delimiters(latex: str) -> str:
    """Removes one pair of outer math delimiters: ``$$``, ``\\[ \\]``, ``\\( \\)`` or ``$``."""
    latex = latex.strip()
    for open_d, close_d in OUTER_DELIMITERS:
        if len(latex) >= len(open_d) + len(close_d) and latex.startswith(open_d) and latex.endswith(close_d):
            return latex[len(open_d):len(latex) - len(close_d)].strip()
    return latex


def has_matrix_environment(latex: Optional[str]) -> bool:
    return bool(latex) and MATRIX_MARKER_RE.search(latex) is not None


def _rewrite_matrix(match: re.Match) -> str:
    env, body = match.group(1), match.group(3)
    open_d, close_d = MATRIX_DELIMITERS[env]
    inner = f'\\begin{{matrix}}{body}\\end{{matrix}}'
    if open_d is None:
        return inner
    return f'\\left{open_d}{inner}\\right{close_d}'


def rewrite_matrix_environments(latex: str) -> str:
    for _ in range(MAX_REWRITE_ROUNDS):
        rewritten = MATRIX_ENV_RE.sub(_rewrite_matrix, latex)
        if rewritten == latex:
            break
        latex = rewritten
    return latex


def normalize_latex(latex: str) -> str:
    """
    Rewrites LaTeX so the MathML regenerated from it keeps stretchy delimiters.

    Examples:
        "\\begin{bmatrix}a&b\\end{bmatrix}" → "\\left[\\begin{matrix}a&b\\end{matrix}\\right]"
        "\\Bigl( x \\Bigr)" → "( x )"
        "a\\quad b" → "a b"
    """
    latex = strip_math_delimiters(latex)
    latex = rewrite_matrix_environments(latex)
    latex = SIZING_RE.sub('', latex)
    latex = STYLE_RE.sub('', latex)
    latex = SPACING_RE.sub(' ', latex)
    latex = NEGATIVE_SPACE_RE.sub('', latex)
    latex = FRAC_VARIANT_RE.sub(r'\\frac', latex)
    return re.sub(r'[ \t]{2,}', ' ', latex).strip()
