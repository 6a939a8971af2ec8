import pytest

from mathdocx.latex_normalizer import (
    has_matrix_environment,
    normalize_latex,
    rewrite_matrix_environments,
    strip_math_delimiters,
)


# ----------------------------------------------------------
# MATRIX ENVIRONMENTS
# ----------------------------------------------------------

@pytest.mark.parametrize("env, expected_open, expected_close", [
    ("bmatrix", r"\left[", r"\right]"),
    ("pmatrix", r"\left(", r"\right)"),
    ("Bmatrix", r"\left\{", r"\right\}"),
    ("vmatrix", r"\left|", r"\right|"),
    ("Vmatrix", r"\left\|", r"\right\|"),
])
def test_delimited_matrices_become_left_right_matrix(env, expected_open, expected_close):
    latex = rf"\begin{{{env}}}a&b\\c&d\end{{{env}}}"
    assert normalize_latex(latex) == rf"{expected_open}\begin{{matrix}}a&b\\c&d\end{{matrix}}{expected_close}"


def test_bmatrix_example():
    assert normalize_latex(r"\begin{bmatrix}a&b\\c&d\end{bmatrix}") == \
        r"\left[\begin{matrix}a&b\\c&d\end{matrix}\right]"


def test_cases_gets_left_brace_only():
    result = normalize_latex(r"f(x)=\begin{cases}1&x>0\\0&x\le 0\end{cases}")
    assert result == r"f(x)=\left\{\begin{matrix}1&x>0\\0&x\le 0\end{matrix}\right."


def test_smallmatrix_is_unwrapped_without_delimiters():
    assert normalize_latex(r"\begin{smallmatrix}a&b\end{smallmatrix}") == r"\begin{matrix}a&b\end{matrix}"


def test_starred_matrix_with_alignment_argument():
    result = normalize_latex(r"\begin{pmatrix*}[r]-1&2\end{pmatrix*}")
    assert result == r"\left(\begin{matrix}-1&2\end{matrix}\right)"


def test_nested_matrices_of_different_kinds_are_both_rewritten():
    latex = r"\begin{pmatrix}\begin{bmatrix}a\end{bmatrix}\end{pmatrix}"
    assert rewrite_matrix_environments(latex) == \
        r"\left(\begin{matrix}\left[\begin{matrix}a\end{matrix}\right]\end{matrix}\right)"


def test_plain_matrix_is_untouched():
    latex = r"\begin{matrix}a\end{matrix}"
    assert normalize_latex(latex) == latex


# ----------------------------------------------------------
# SIZING, SPACING, STYLE
# ----------------------------------------------------------

def test_sizing_commands_are_removed():
    assert normalize_latex(r"\Bigl( x \Bigr)") == "( x )"
    assert normalize_latex(r"\big[ a \big]") == "[ a ]"
    assert normalize_latex(r"\biggl\{ a \biggr\}") == r"\{ a \}"


def test_big_operators_are_not_mistaken_for_sizing():
    assert normalize_latex(r"\bigcup_i A_i") == r"\bigcup_i A_i"
    assert normalize_latex(r"\bigoplus V") == r"\bigoplus V"


def test_spacing_commands_become_single_space():
    assert normalize_latex(r"a\quad b") == "a b"
    assert normalize_latex(r"a\qquad b") == "a b"
    assert normalize_latex(r"a\,b") == "a b"
    assert normalize_latex(r"a\;b\:c") == "a b c"


def test_negative_space_is_removed():
    assert normalize_latex(r"\int\!\!\int f") == r"\int\int f"


def test_style_commands_are_removed():
    assert normalize_latex(r"\displaystyle\sum_i x_i") == r"\sum_i x_i"
    assert normalize_latex(r"\textstyle x") == "x"


def test_frac_variants_become_frac():
    assert normalize_latex(r"\dfrac{1}{2}+\tfrac{a}{b}") == r"\frac{1}{2}+\frac{a}{b}"


def test_line_break_is_not_treated_as_spacing():
    assert normalize_latex(r"a\\,b") == r"a\\,b"


# ----------------------------------------------------------
# OUTER DELIMITERS AND DETECTION
# ----------------------------------------------------------

@pytest.mark.parametrize("wrapped", ["$$x^2$$", r"\[x^2\]", r"\(x^2\)", "$x^2$", "  $x^2$  "])
def test_strip_math_delimiters(wrapped):
    assert strip_math_delimiters(wrapped) == "x^2"


def test_strip_math_delimiters_leaves_bare_latex():
    assert strip_math_delimiters("a+b") == "a+b"
    assert strip_math_delimiters("$") == "$"


def test_has_matrix_environment():
    assert has_matrix_environment(r"\begin{bmatrix}1\end{bmatrix}")
    assert has_matrix_environment(r"x=\begin{cases}1\end{cases}")
    assert has_matrix_environment(r"\begin{array}{cc}1&2\end{array}")
    assert not has_matrix_environment(r"\frac{a}{b}")
    assert not has_matrix_environment(None)
    assert not has_matrix_environment("")
