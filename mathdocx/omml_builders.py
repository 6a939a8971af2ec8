# mathdocx/omml_builders.py
import copy
from typing import Iterable, List, Optional

from lxml import etree

# --- 1. OMML 命名空间和常量 ---
M_NAMESPACE = "http://schemas.openxmlformats.org/officeDocument/2006/math"
W_NAMESPACE = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"
M_PREFIX = "{%s}" % M_NAMESPACE
XML_SPACE = "{%s}space" % XML_NAMESPACE


def _m_tag(tag_name: str) -> str: return M_PREFIX + tag_name


# Property children must follow schema order inside their *Pr element.
PR_CHILD_ORDER = {
    'naryPr': ['chr', 'limLoc', 'grow', 'subHide', 'supHide', 'ctrlPr'],
    'dPr': ['begChr', 'sepChr', 'endChr', 'grow', 'shp', 'ctrlPr'],
}

def set_property(element: etree._Element, pr_name: str, child_name: str, value: str) -> etree._Element:
    """Sets ``<m:{pr_name}><m:{child_name} m:val=value/>`` on a construct, keeping schema order."""
    pr = element.find(_m_tag(pr_name))
    if pr is None:
        pr = etree.Element(_m_tag(pr_name))
        element.insert(0, pr)
    child = pr.find(_m_tag(child_name))
    if child is None:
        child = etree.Element(_m_tag(child_name))
        order = PR_CHILD_ORDER.get(pr_name, [])
        rank = order.index(child_name) if child_name in order else len(order)
        position = 0
        for i, existing in enumerate(pr):
            local = etree.QName(existing).localname
            if local in order and order.index(local) < rank:
                position = i + 1
        pr.insert(position, child)
    child.set(_m_tag('val'), value)
    return child


def get_property(element: etree._Element, pr_name: str, child_name: str) -> Optional[str]:
    child = element.find(f'{_m_tag(pr_name)}/{_m_tag(child_name)}')
    return None if child is None else child.get(_m_tag('val'))


# --- 2. OMML 元素构建器 (Element Builders) ---
def _create_run_omml(text: str, rpr: Optional[etree._Element] = None) -> etree._Element:
    mr = etree.Element(_m_tag('r'))
    if rpr is not None:
        mr.append(copy.deepcopy(rpr))
    mt = etree.SubElement(mr, _m_tag('t'))
    if text.startswith(' ') or text.endswith(' ') or '  ' in text: mt.set(XML_SPACE, 'preserve')
    mt.text = text
    return mr


def _fill(slot: etree._Element, elements: Iterable[etree._Element]) -> etree._Element:
    for el in elements: slot.append(el)
    return slot


def _create_fraction_omml(num: List[etree._Element], den: List[etree._Element]) -> etree._Element:
    mf = etree.Element(_m_tag('f'))
    _fill(etree.SubElement(mf, _m_tag('num')), num)
    _fill(etree.SubElement(mf, _m_tag('den')), den)
    return mf


def _create_subscript_omml(base: List[etree._Element], sub: List[etree._Element]) -> etree._Element:
    msSub = etree.Element(_m_tag('sSub'))
    _fill(etree.SubElement(msSub, _m_tag('e')), base)
    _fill(etree.SubElement(msSub, _m_tag('sub')), sub)
    return msSub


def _create_subsup_omml(base: List[etree._Element], sub: List[etree._Element],
                        sup: List[etree._Element]) -> etree._Element:
    msSubSup = etree.Element(_m_tag('sSubSup'))
    _fill(etree.SubElement(msSubSup, _m_tag('e')), base)
    _fill(etree.SubElement(msSubSup, _m_tag('sub')), sub)
    _fill(etree.SubElement(msSubSup, _m_tag('sup')), sup)
    return msSubSup


def _create_nary_omml(op: str, sub: List[etree._Element], sup: List[etree._Element],
                      base: List[etree._Element], lim_loc: Optional[str] = None) -> etree._Element:
    """
    Builds ``<m:nary>``. The sub, sup and e slots are always emitted (the schema requires
    them); empty limits are hidden through ``subHide``/``supHide``.
    """
    mnary = etree.Element(_m_tag('nary'))
    set_property(mnary, 'naryPr', 'chr', op)
    if lim_loc:
        set_property(mnary, 'naryPr', 'limLoc', lim_loc)
    if not sub:
        set_property(mnary, 'naryPr', 'subHide', '1')
    if not sup:
        set_property(mnary, 'naryPr', 'supHide', '1')
    _fill(etree.SubElement(mnary, _m_tag('sub')), sub)
    _fill(etree.SubElement(mnary, _m_tag('sup')), sup)
    _fill(etree.SubElement(mnary, _m_tag('e')), base)
    return mnary


def _create_delimiter_omml(open_c: str, close_c: str, content: List[etree._Element]) -> etree._Element:
    md = etree.Element(_m_tag('d'))
    set_property(md, 'dPr', 'begChr', open_c)
    set_property(md, 'dPr', 'endChr', close_c)
    _fill(etree.SubElement(md, _m_tag('e')), content)
    return md
