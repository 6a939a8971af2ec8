# mathdocx/mathml_cleaner.py
"""
Strips KaTeX-specific decoration from MathML before it reaches the MathML→OMML converter.

Works on the serialized string: the MathML comes straight out of an HTML parser and may
carry HTML entities, so it is not guaranteed to be well-formed XML at this point.
"""
import re

from .text_utils import ZERO_WIDTH_RE, normalize_spaces

ANNOTATION_XML_RE = re.compile(r'<annotation-xml\b[\s\S]*?</annotation-xml>', re.IGNORECASE)
ANNOTATION_RE = re.compile(r'<annotation\b[\s\S]*?</annotation>', re.IGNORECASE)
SEMANTICS_TAG_RE = re.compile(r'</?semantics\b[^>]*>', re.IGNORECASE)
MSTYLE_TAG_RE = re.compile(r'</?mstyle\b[^>]*>', re.IGNORECASE)

# U+2061 function application, U+2062 invisible times, U+2063 invisible separator, U+2064 invisible plus
INVISIBLE_OPERATOR_RE = re.compile(r'[\u2061-\u2064]|&#x206[1-4];|&#826[1-4];|&(?:ApplyFunction|af|InvisibleTimes|it|InvisibleComma|ic);')
INVISIBLE_MO_RE = re.compile(
    r'<mo\b[^>]*>\s*(?:[\u2061-\u2064]|&#x206[1-4];|&#826[1-4];|&(?:ApplyFunction|af|InvisibleTimes|it|InvisibleComma|ic);)\s*</mo>'
)
NBSP_ENTITY_RE = re.compile(r'&nbsp;|&#160;|&#xa0;', re.IGNORECASE)

MTEXT_RE = re.compile(r'<mtext\b[^>]*>([\s\S]*?)</mtext>')
MTEXT_EMPTY_RE = re.compile(r'<mtext\b[^>]*/>')
TAG_RE = re.compile(r'<[^>]+>')

MO_OPEN_TAG_RE = re.compile(r'<mo\b[^>]*>')
FENCE_ATTRIBUTES = ('fence', 'stretchy', 'symmetric', 'form', 'minsize', 'maxsize')
FENCE_ATTRIBUTE_RE = re.compile(r'\s+(?:%s)\s*=\s*(?:"[^"]*"|\'[^\']*\')' % '|'.join(FENCE_ATTRIBUTES))

MATHML_XMLNS_RE = re.compile(r'\s+xmlns(?::mml)?\s*=\s*"http://www\.w3\.org/1998/Math/MathML"')


def strip_annotations(mathml: str) -> str:
    mathml = ANNOTATION_XML_RE.sub('', mathml)
    mathml = ANNOTATION_RE.sub('', mathml)
    return SEMANTICS_TAG_RE.sub('', mathml)


def strip_invisible_operators(mathml: str) -> str:
    return INVISIBLE_OPERATOR_RE.sub('', INVISIBLE_MO_RE.sub('', mathml))


def _flatten_mtext(match: re.Match) -> str:
    text = ZERO_WIDTH_RE.sub('', TAG_RE.sub('', match.group(1)))
    return f'<mi>{text}</mi>'


def flatten_mtext(mathml: str) -> str:
    """<mtext> → <mi>, with nested markup and zero-width characters removed."""
    mathml = MTEXT_EMPTY_RE.sub('<mi></mi>', mathml)
    return MTEXT_RE.sub(_flatten_mtext, mathml)


def strip_fence_attributes(mathml: str) -> str:
    return MO_OPEN_TAG_RE.sub(lambda m: FENCE_ATTRIBUTE_RE.sub('', m.group(0)), mathml)


def clean_mathml(mathml: str) -> str:
    """
    Applies every pre-cleaning step in order.

    The converter mishandles semantic annotations, <mstyle> wrappers, invisible
    operators and conflicting stretchy hints; all of them are removed here.
    """
    mathml = strip_annotations(mathml)
    mathml = MSTYLE_TAG_RE.sub('', mathml)
    mathml = strip_invisible_operators(mathml)
    mathml = normalize_spaces(NBSP_ENTITY_RE.sub(' ', mathml))
    mathml = flatten_mtext(mathml)
    mathml = strip_fence_attributes(mathml)
    return MATHML_XMLNS_RE.sub('', mathml).strip()
