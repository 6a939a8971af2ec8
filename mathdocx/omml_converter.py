# mathdocx/omml_converter.py
"""Thin wrapper around the MathML→OMML converter with a fraction-preserving retry."""
import html.entities
import logging
import re
from typing import Callable, Optional

import mathml2omml

from .omml_tree import contains_fraction_marker

logger = logging.getLogger(__name__)

MathMLConverter = Callable[[str], str]

MFRAC_RE = re.compile(r'<mfrac[\s/>]')
# An <mo> holding only a fence glyph (literal or entity).
FENCE_MO_RE = re.compile(
    r'<mo\b[^>]*>\s*'
    r'(?:[()\[\]{}|‖⟨⟩〈〉]|&(?:lpar|rpar|lsqb|rsqb|lbrack|rbrack|lcub|rcub|lbrace|rbrace|vert|Vert|lang|rang|lvert|rvert);'
    r'|&#x(?:28|29|5[bBdD]|7[bBcCdD]|2016|27[eE][89]|300[89]);)'
    r'\s*</mo>'
)


class OmmlConversionError(Exception):
    """The converter produced nothing usable for a MathML input."""


def default_converter(mathml: str) -> str:
    return mathml2omml.convert(mathml, html.entities.name2codepoint)


def strip_fence_operators(mathml: str) -> str:
    """Removes <mo> fence glyphs; some converters drop an <mfrac> sitting between fences."""
    return FENCE_MO_RE.sub('', mathml)


def _try_convert(converter: MathMLConverter, mathml: str) -> Optional[str]:
    try:
        result = converter(mathml)
    except Exception as e:
        # The converter parses its input with its own XML stack and may raise anything.
        logger.debug("MathML→OMML conversion raised %s: %s", type(e).__name__, e)
        return None
    if not result or not result.strip():
        return None
    return result.strip()


def convert_mathml(mathml: str, converter: Optional[MathMLConverter] = None) -> str:
    """
    Converts MathML to an OMML fragment.

    When the input holds an <mfrac> but the output has no m:f, conversion is retried
    once with the fence operators stripped.

    Raises:
        OmmlConversionError: every attempt failed or lost the fraction.
    """
    converter = converter or default_converter
    needs_fraction = MFRAC_RE.search(mathml) is not None

    attempts = [mathml]
    if needs_fraction:
        stripped = strip_fence_operators(mathml)
        if stripped != mathml:
            attempts.append(stripped)

    for attempt, source in enumerate(attempts, start=1):
        result = _try_convert(converter, source)
        if result is None:
            continue
        if needs_fraction and not contains_fraction_marker(result):
            logger.debug("Conversion attempt %d lost the fraction", attempt)
            continue
        return result

    raise OmmlConversionError(f"MathML could not be converted after {len(attempts)} attempt(s)")
