# mathdocx/math_source.py
"""
Recovers math sources from rendered KaTeX HTML and drives the MathML → OMML pipeline.

A KaTeX element carries two sources: the MathML it embeds next to the HTML rendering
and the original LaTeX in the ``application/x-tex`` annotation. The embedded MathML is
tried first, except for matrix environments, where MathML regenerated from the
normalized LaTeX keeps the stretchy delimiters the embedded copy loses.
"""
import logging
import re
from typing import Iterator, Optional, Tuple

import latex2mathml.converter
from bs4 import Tag

from .config import settings
from .latex_normalizer import has_matrix_environment, normalize_latex, strip_math_delimiters
from .mathml_cleaner import clean_mathml
from .omml_converter import MathMLConverter, OmmlConversionError, convert_mathml
from .omml_repair import repair_omml
from .schemas import MathElement

logger = logging.getLogger(__name__)

KATEX_CLASSES = ('katex', 'katex-display')
TEX_ANNOTATION_ENCODINGS = ('application/x-tex', 'application/x-latex', 'application/tex')
MATH_BLOCK_RE = re.compile(r'<math[\s>][\s\S]*?</math>', re.IGNORECASE)
PARSE_ERROR_RE = re.compile(r'^ParseError:', re.IGNORECASE)


# --- 1. 从 KaTeX 元素中提取 ---
def is_math_element(tag: Tag) -> bool:
    classes = tag.get('class') or []
    return any(name in classes for name in KATEX_CLASSES)


def is_display_math(tag: Tag) -> bool:
    if 'katex-display' in (tag.get('class') or []):
        return True
    math = tag.find('math')
    return math is not None and math.get('display') == 'block'


def extract_latex(tag: Tag) -> Optional[str]:
    """
    LaTeX behind a KaTeX element: the TeX annotation, else a ``title`` attribute that
    looks like TeX (KaTeX error spans put the source there), else backslash-bearing text.
    """
    for annotation in tag.find_all('annotation'):
        if (annotation.get('encoding') or '').lower() in TEX_ANNOTATION_ENCODINGS:
            latex = annotation.get_text().strip()
            if latex:
                return latex

    title = (tag.get('title') or '').strip()
    if '\\' in title and len(title) < settings.max_title_latex_length and not PARSE_ERROR_RE.match(title):
        return title

    text = tag.get_text().strip()
    return text if '\\' in text else None


def extract_mathml(tag: Tag) -> Optional[str]:
    math = tag.find('math')
    return str(math) if math is not None else None


def extract_math_element(tag: Tag) -> MathElement:
    return MathElement(latex=extract_latex(tag), mathml=extract_mathml(tag), display_mode=is_display_math(tag))


def fallback_latex_text(tag: Tag) -> str:
    """Literal text shown when no OMML could be produced."""
    latex = extract_latex(tag)
    if latex:
        return latex
    mathml = tag.find(class_='katex-mathml')
    return (mathml or tag).get_text(' ', strip=True)


# --- 2. 选择 MathML 来源 ---
def regenerate_mathml(latex: str, display_mode: bool = False) -> Optional[str]:
    """MathML rendered from normalized LaTeX, or None when the LaTeX does not compile."""
    try:
        rendered = latex2mathml.converter.convert(normalize_latex(latex), display='block' if display_mode else 'inline')
    except Exception as e:
        # latex2mathml signals bad input with a mix of its own and built-in exceptions.
        logger.debug("LaTeX→MathML regeneration failed for %r: %s", latex, e)
        return None
    match = MATH_BLOCK_RE.search(rendered or '')
    return match.group(0) if match else None


def candidate_mathml(element: MathElement) -> Iterator[Tuple[str, str]]:
    """Yields ``(source, mathml)`` pairs in the order they should be tried."""
    order = ('regenerated', 'embedded') if has_matrix_environment(element.latex) else ('embedded', 'regenerated')
    for source in order:
        if source == 'embedded':
            mathml = element.mathml
        else:
            mathml = regenerate_mathml(element.latex, element.display_mode) if element.latex else None
        if mathml:
            yield source, mathml


# --- 3. 生成 OMML ---
def build_omml(element: MathElement, converter: Optional[MathMLConverter] = None) -> Optional[str]:
    """
    Runs clean → convert → repair over each candidate MathML.

    Returns the first usable OMML fragment, or None when every source fails.
    """
    for source, mathml in candidate_mathml(element):
        try:
            raw = convert_mathml(clean_mathml(mathml), converter)
        except OmmlConversionError as e:
            logger.info("%s MathML not convertible: %s", source.capitalize(), e)
            continue
        repaired = repair_omml(raw)
        if repaired is None:
            # converter emitted malformed XML; splicing it would corrupt document.xml
            logger.info("%s MathML converted to malformed OMML, trying next source", source.capitalize())
            continue
        return repaired
    logger.warning("No OMML for math element (latex=%r)", element.latex)
    return None


def build_omml_from_element(tag: Tag, converter: Optional[MathMLConverter] = None) -> Optional[str]:
    return build_omml(extract_math_element(tag), converter)


def latex_to_omml(latex: str, display_mode: bool = False,
                  converter: Optional[MathMLConverter] = None) -> Optional[str]:
    """OMML for bare LaTeX (outer ``$``/``$$``/``\\(\\)``/``\\[\\]`` delimiters allowed)."""
    element = MathElement(latex=strip_math_delimiters(latex), display_mode=display_mode)
    if not element.latex:
        return None
    return build_omml(element, converter)
