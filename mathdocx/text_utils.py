# mathdocx/text_utils.py
"""Character-level sanitization shared by the document walker and the OMML passes."""
import re

ZERO_WIDTH_RE = re.compile(r'[\u200B\u200C\u200D\u2060\uFEFF\u00AD\u202A-\u202E\u2066-\u2069]')
XML_INVALID_RE = re.compile(r'[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u0084\u0086-\u009F]')
# NBSP, en/em/thin/hair spaces, narrow NBSP, medium math space, ideographic space
TYPOGRAPHIC_SPACE_RE = re.compile(r'[\u00A0\u2000-\u200A\u202F\u205F\u3000]')
SURROGATE_RE = re.compile(r'[\uD800-\uDFFF]')


def strip_zero_width(value: str) -> str:
    return ZERO_WIDTH_RE.sub('', value)


def strip_unpaired_surrogates(value: str) -> str:
    """Drops lone surrogate code points; they cannot be encoded into the XML part."""
    if not SURROGATE_RE.search(value):
        return value
    try:
        # Properly paired surrogates (UTF-16 leftovers) are joined back into one code point.
        return value.encode('utf-16', 'surrogatepass').decode('utf-16')
    except UnicodeDecodeError:
        return SURROGATE_RE.sub('', value)


def sanitize_xml_text(value: str) -> str:
    return XML_INVALID_RE.sub('', strip_unpaired_surrogates(strip_zero_width(value)))


def normalize_spaces(value: str) -> str:
    return TYPOGRAPHIC_SPACE_RE.sub(' ', value)


def normalize_text(value: str) -> str:
    """Inline text: sanitized, typographic spaces flattened, whitespace runs collapsed."""
    return re.sub(r'\s+', ' ', normalize_spaces(sanitize_xml_text(value)))


def normalize_preserve_whitespace(value: str) -> str:
    return sanitize_xml_text(value).replace('\u00a0', ' ')
