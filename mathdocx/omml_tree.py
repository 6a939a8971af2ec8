# mathdocx/omml_tree.py
"""Parsing, inspection and serialization helpers for OMML fragments."""
import re
from typing import Dict, List, NamedTuple, Optional

from lxml import etree

from .omml_builders import M_NAMESPACE, W_NAMESPACE, _m_tag

FRAGMENT_WRAPPER = 'omml-fragment'

# Prefixes the converter may leak next to m:; declared on the wrapper so the fragment parses.
FRAGMENT_NAMESPACES = {
    'm': M_NAMESPACE,
    'w': W_NAMESPACE,
    'wp': "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing",
    'a': "http://schemas.openxmlformats.org/drawingml/2006/main",
    'mc': "http://schemas.openxmlformats.org/markup-compatibility/2006",
    'r': "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
}

XML_DECLARATION_RE = re.compile(r'^\s*<\?xml[^>]*\?>\s*')
NAMESPACE_DECLARATION_RE = re.compile(r'\s+xmlns(?::\w+)?="[^"]*"')
FRACTION_MARKER_RE = re.compile(r'<m:f[\s/>]')


class DelimiterPair(NamedTuple):
    open: str
    close: str


DELIMITER_PAIRS = (
    DelimiterPair('(', ')'),
    DelimiterPair('[', ']'),
    DelimiterPair('{', '}'),
    DelimiterPair('⟨', '⟩'),
    DelimiterPair('〈', '〉'),
    DelimiterPair('|', '|'),
    DelimiterPair('‖', '‖'),
)
OPEN_TO_CLOSE: Dict[str, str] = {pair.open: pair.close for pair in DELIMITER_PAIRS}

# matrix, fraction, radical, n-ary, stacked, bracketed group, scripts, grouped character
TALL_CONSTRUCTS = frozenset({
    'm', 'f', 'rad', 'nary', 'eqArr', 'limLow', 'limUpp', 'd',
    'sSub', 'sSup', 'sSubSup', 'sPre', 'groupChr',
})

# Elements whose direct children are a sequence of math objects.
CONTAINERS = frozenset({
    'oMath', 'e', 'num', 'den', 'sub', 'sup', 'deg', 'fName', 'lim',
})

SCRIPT_CONSTRUCTS = frozenset({'sSub', 'sSup', 'sSubSup'})


def parse_fragment(omml: str) -> etree._Element:
    """
    Parses converter output into a tree rooted at a synthetic wrapper element.

    Raises:
        etree.XMLSyntaxError: the fragment is not well-formed.
    """
    body = XML_DECLARATION_RE.sub('', omml)
    declarations = ' '.join(f'xmlns:{prefix}="{uri}"' for prefix, uri in FRAGMENT_NAMESPACES.items())
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False)
    return etree.fromstring(f'<{FRAGMENT_WRAPPER} {declarations}>{body}</{FRAGMENT_WRAPPER}>', parser)


def serialize_fragment(root: etree._Element) -> str:
    """Serializes the wrapper's children, dropping the namespace declarations lxml re-adds."""
    parts = [etree.tostring(child, encoding='unicode', with_tail=False) for child in root]
    return NAMESPACE_DECLARATION_RE.sub('', ''.join(parts))


def local_name(element: etree._Element) -> Optional[str]:
    if not isinstance(element.tag, str):
        return None
    return etree.QName(element).localname


def is_math(element: etree._Element, *names: str) -> bool:
    if not isinstance(element.tag, str) or etree.QName(element).namespace != M_NAMESPACE:
        return False
    return not names or etree.QName(element).localname in names


def is_run(element: etree._Element) -> bool:
    return is_math(element, 'r')


def run_text(element: etree._Element) -> Optional[str]:
    """Concatenated ``m:t`` text of a run, or None when the element is not a run."""
    if not is_run(element):
        return None
    return ''.join(t.text or '' for t in element.iter(_m_tag('t')))


def run_properties(run: etree._Element) -> Optional[etree._Element]:
    return run.find(_m_tag('rPr'))


def is_tall(element: etree._Element) -> bool:
    return is_math(element) and local_name(element) in TALL_CONSTRUCTS


def is_empty_slot(slot: Optional[etree._Element]) -> bool:
    return slot is not None and len(slot) == 0 and not (slot.text or '').strip()


def slot(element: etree._Element, name: str) -> Optional[etree._Element]:
    return element.find(_m_tag(name))


def containers(root: etree._Element) -> List[etree._Element]:
    """Wrapper plus every container element, in document order."""
    found = [root]
    found.extend(el for el in root.iter() if el is not root and is_math(el) and local_name(el) in CONTAINERS)
    return found


def replace_span(parent: etree._Element, start: int, end: int, replacement: List[etree._Element]) -> None:
    """Replaces children ``parent[start:end]`` with ``replacement``."""
    for child in list(parent)[start:end]:
        parent.remove(child)
    for offset, el in enumerate(replacement):
        parent.insert(start + offset, el)


def has_fraction(root: etree._Element) -> bool:
    return next(root.iter(_m_tag('f')), None) is not None


def has_top_level_fraction(root: etree._Element) -> bool:
    """
    A fraction sitting directly in ``m:oMath`` (or in the wrapper itself). Redundant
    ``m:box/m:e`` wrappers between the two are looked through.
    """
    for f in root.iter(_m_tag('f')):
        parent = f.getparent()
        while is_math(parent, 'e') and parent.getparent() is not None and is_math(parent.getparent(), 'box'):
            parent = parent.getparent().getparent()
        if parent is root or is_math(parent, 'oMath'):
            return True
    return False


def contains_fraction_marker(omml: str) -> bool:
    return FRACTION_MARKER_RE.search(omml) is not None
