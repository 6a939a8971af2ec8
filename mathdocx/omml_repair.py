# mathdocx/omml_repair.py
"""
Structural repair of converter OMML.

The MathML→OMML converter produces valid but semantically poor output for integrals,
bracketed tall content, norms and scripts. Each repair is a named rule registered in
application order; ``repair_omml`` runs them over a parsed copy of the fragment and
re-serializes the result.
"""
import copy
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from lxml import etree

from .omml_builders import (
    _create_delimiter_omml,
    _create_fraction_omml,
    _create_nary_omml,
    _create_run_omml,
    _create_subscript_omml,
    _create_subsup_omml,
    _m_tag,
    get_property,
    set_property,
    M_NAMESPACE,
    XML_SPACE,
)
from .omml_tree import (
    OPEN_TO_CLOSE,
    SCRIPT_CONSTRUCTS,
    containers,
    has_fraction,
    has_top_level_fraction,
    is_empty_slot,
    is_math,
    is_run,
    is_tall,
    local_name,
    parse_fragment,
    replace_span,
    run_properties,
    run_text,
    serialize_fragment,
    slot,
)
from .text_utils import normalize_spaces, sanitize_xml_text

logger = logging.getLogger(__name__)

INTEGRAL_GLYPHS = frozenset('∫∬∭∮∯∰∱∲∳')
SUM_GLYPHS = frozenset('∑')
LARGE_OPERATORS = INTEGRAL_GLYPHS | frozenset('∑∏∐⋃⋂⋁⋀⨀⨁⨂')
INFINITY = '∞'
DEFAULT_NARY_CHR = '∫'

DIGITS_RE = re.compile(r'^\d+$')
# "dx", "d x", "ⅆx", "dθ" or a lone "d"
DIFFERENTIAL_RE = re.compile(r'^\s*[dⅆ]\s*[A-Za-zΑ-ω]?\s*$')
NORM_SCRIPT_RE = re.compile(r'^(.*?)‖([0-9₀-₉]+)(.*)$', re.S)
SUBSCRIPT_DIGITS = str.maketrans('₀₁₂₃₄₅₆₇₈₉', '0123456789')

REQUIRED_SCRIPT_SLOTS = {
    'sSub': ('sub',),
    'sSup': ('sup',),
    'sSubSup': ('sub', 'sup'),
}

CLOSING_GLYPHS = frozenset(OPEN_TO_CLOSE.values())

PROMOTE_DELIMITERS = 'promote_delimiters'
MAX_SWEEPS = 32


@dataclass
class RepairState:
    """Facts shared between rules during one repair run."""
    raw_has_top_level_fraction: bool = False
    bracketed_fraction_rebuilt: bool = False


@dataclass(frozen=True)
class RepairRule:
    name: str
    apply: Callable[[etree._Element, RepairState], None]


REPAIR_RULES: List[RepairRule] = []


def repair_rule(name: str):
    """Registers a rule; registration order is application order."""
    def decorator(func):
        REPAIR_RULES.append(RepairRule(name, func))
        return func
    return decorator


# --- 1. 通用辅助函数 ---
def _text(element: etree._Element) -> str:
    return (run_text(element) or '').strip()


def _nary_chr(element: etree._Element) -> str:
    return get_property(element, 'naryPr', 'chr') or DEFAULT_NARY_CHR


def _is_nary_of(element: etree._Element, glyphs: frozenset) -> bool:
    return is_math(element, 'nary') and _nary_chr(element) in glyphs


def _collapse(parent: etree._Element, start: int, stop: int, build) -> etree._Element:
    """Detaches ``parent[start:stop]``, builds one element from them and puts it in their place."""
    span = list(parent)[start:stop]
    for child in span:
        parent.remove(child)
    built = build(span)
    parent.insert(start, built)
    return built


def _rewrite_until_stable(root: etree._Element, rewrite_once: Callable[[etree._Element], bool]) -> bool:
    """
    Applies ``rewrite_once`` to every container until a full sweep changes nothing.
    ``rewrite_once`` performs at most one rewrite and reports whether it did.
    """
    changed_any = False
    for _ in range(MAX_SWEEPS):
        changed = False
        for container in containers(root):
            while rewrite_once(container):
                changed = True
        if not changed:
            break
        changed_any = True
    return changed_any


# --- 2. 修复规则 (按应用顺序注册) ---
@repair_rule('strip_foreign_elements')
def strip_foreign_elements(root: etree._Element, state: RepairState) -> None:
    """Drops everything outside the OMML namespace (w:rPr fonts, comments, PIs)."""
    for el in list(root.iter()):
        if el is root:
            continue
        if isinstance(el.tag, str) and etree.QName(el).namespace == M_NAMESPACE:
            continue
        parent = el.getparent()
        if parent is not None:
            parent.remove(el)


@repair_rule('unwrap_redundant_boxes')
def unwrap_redundant_boxes(root: etree._Element, state: RepairState) -> None:
    """``<m:box><m:e>…</m:e></m:box>`` without box properties is replaced by its content."""
    for box in reversed(list(root.iter(_m_tag('box')))):
        parent = box.getparent()
        children = list(box)
        if parent is None or len(children) != 1 or not is_math(children[0], 'e'):
            continue
        index = parent.index(box)
        replace_span(parent, index, index + 1, list(children[0]))


def _promote_scripted_operator(script: etree._Element) -> bool:
    base = slot(script, 'e')
    if base is None or len(base) != 1 or _text(base[0]) not in LARGE_OPERATORS:
        return False
    op = _text(base[0])
    sub_slot, sup_slot = slot(script, 'sub'), slot(script, 'sup')
    sub = list(sub_slot) if sub_slot is not None else []
    sup = list(sup_slot) if sup_slot is not None else []
    lim_loc = 'undOvr' if op in INTEGRAL_GLYPHS else None
    parent = script.getparent()
    index = parent.index(script)
    replace_span(parent, index, index + 1, [_create_nary_omml(op, sub, sup, [], lim_loc=lim_loc)])
    return True


def _rebuild_integral_run(container: etree._Element) -> bool:
    children = list(container)
    for i, child in enumerate(children):
        if _text(child) not in INTEGRAL_GLYPHS:
            continue
        op = _text(child)
        stop = i + 1
        sub, sup = [], []
        if stop < len(children) and DIGITS_RE.match(_text(children[stop])):
            sub = [_create_run_omml(_text(children[stop]))]
            stop += 1
        if stop < len(children) and _text(children[stop]) == INFINITY:
            sup = [_create_run_omml(INFINITY)]
            stop += 1
        _collapse(container, i, stop, lambda span: _create_nary_omml(op, sub, sup, [], lim_loc='undOvr'))
        return True
    return False


@repair_rule('rebuild_integral_runs')
def rebuild_integral_runs(root: etree._Element, state: RepairState) -> None:
    """
    Plain-text integral glyphs become n-ary constructs.

    A digit run right after the glyph becomes the lower limit and a following "∞" run
    the upper limit. Script constructs whose base is a lone large operator are turned
    into n-ary constructs with the scripts as limits.
    """
    scripts = list(root.iter(*[_m_tag(name) for name in SCRIPT_CONSTRUCTS]))
    for script in reversed(scripts):
        if script.getparent() is not None:
            _promote_scripted_operator(script)
    _rewrite_until_stable(root, _rebuild_integral_run)


@repair_rule('repair_norm_subscripts')
def repair_norm_subscripts(root: etree._Element, state: RepairState) -> None:
    """A "‖" glued to trailing digits ("‖2", "‖₂₂") becomes ‖ with a subscript (and superscript)."""
    for _ in range(MAX_SWEEPS * 2):
        target = None
        for run in root.iter(_m_tag('r')):
            match = NORM_SCRIPT_RE.match(run_text(run) or '')
            if match and run.getparent() is not None:
                target = (run, match)
                break
        if target is None:
            return
        run, match = target
        prefix, digits, suffix = match.group(1), match.group(2).translate(SUBSCRIPT_DIGITS), match.group(3)
        rpr = run_properties(run)
        base = [_create_run_omml('‖', rpr=rpr)]
        if len(digits) >= 2:
            construct = _create_subsup_omml(base, [_create_run_omml(digits[0], rpr=rpr)],
                                            [_create_run_omml(digits[1:], rpr=rpr)])
        else:
            construct = _create_subscript_omml(base, [_create_run_omml(digits, rpr=rpr)])
        replacement = []
        if prefix:
            replacement.append(_create_run_omml(prefix, rpr=rpr))
        replacement.append(construct)
        if suffix:
            replacement.append(_create_run_omml(suffix, rpr=rpr))
        parent = run.getparent()
        index = parent.index(run)
        replace_span(parent, index, index + 1, replacement)


@repair_rule('adopt_empty_integrands')
def adopt_empty_integrands(root: etree._Element, state: RepairState) -> None:
    """An n-ary with an empty body adopts the run that follows it, unless that run is a differential or a closing fence."""
    for nary in list(root.iter(_m_tag('nary'))):
        body = slot(nary, 'e')
        if body is None:
            body = etree.SubElement(nary, _m_tag('e'))
        if not is_empty_slot(body):
            continue
        following = nary.getnext()
        if following is None or not is_run(following):
            continue
        text = run_text(following) or ''
        if not text.strip() or text.strip() in CLOSING_GLYPHS or DIFFERENTIAL_RE.match(text):
            continue
        body.append(following)


@repair_rule('place_integral_limits')
def place_integral_limits(root: etree._Element, state: RepairState) -> None:
    for nary in list(root.iter(_m_tag('nary'))):
        if _nary_chr(nary) in INTEGRAL_GLYPHS:
            set_property(nary, 'naryPr', 'limLoc', 'undOvr')


@repair_rule('wrap_script_base_delimiters')
def wrap_script_base_delimiters(root: etree._Element, state: RepairState) -> None:
    """A script base of the form "open ... close" is replaced by a delimiter construct."""
    for script in list(root.iter(*[_m_tag(name) for name in SCRIPT_CONSTRUCTS])):
        base = slot(script, 'e')
        if base is None or len(base) < 3:
            continue
        children = list(base)
        open_c, close_c = _text(children[0]), _text(children[-1])
        if OPEN_TO_CLOSE.get(open_c) != close_c or not is_run(children[-1]):
            continue
        _collapse(base, 0, len(children), lambda span: _create_delimiter_omml(open_c, close_c, span[1:-1]))


def _wrap_brackets(container: etree._Element) -> bool:
    children = list(container)
    for i, child in enumerate(children):
        if _text(child) != '[':
            continue
        depth, saw_tall, end = 0, False, None
        for j in range(i + 1, len(children)):
            text = _text(children[j])
            if text == '[':
                depth += 1
            elif text == ']':
                if depth == 0:
                    end = j
                    break
                depth -= 1
            elif is_tall(children[j]):
                saw_tall = True
        if end is not None and saw_tall:
            _collapse(container, i, end + 1, lambda span: _create_delimiter_omml('[', ']', span[1:-1]))
            return True
    return False


@repair_rule('wrap_brackets_around_tall')
def wrap_brackets_around_tall(root: etree._Element, state: RepairState) -> None:
    _rewrite_until_stable(root, _wrap_brackets)


def _wrap_brace(container: etree._Element) -> bool:
    children = list(container)
    for i in range(len(children) - 1):
        if _text(children[i]) != '{' or not is_math(children[i + 1], 'm', 'eqArr'):
            continue
        if i + 2 < len(children) and _text(children[i + 2]) == '}':
            _collapse(container, i, i + 3, lambda span: _create_delimiter_omml('{', '}', [span[1]]))
        else:
            _collapse(container, i, i + 2, lambda span: _create_delimiter_omml('{', '', [span[1]]))
        return True
    return False


@repair_rule('wrap_brace_before_matrix')
def wrap_brace_before_matrix(root: etree._Element, state: RepairState) -> None:
    """A "{" run directly before a matrix becomes a (cases-style) brace delimiter."""
    _rewrite_until_stable(root, _wrap_brace)


def _match_bracketed_fraction(children: List[etree._Element], i: int) -> Optional[int]:
    """Index of the closing run for "open ∫… text [1+] ∑… close" starting at ``i``."""
    close_c = OPEN_TO_CLOSE.get(_text(children[i]))
    if close_c is None or not is_run(children[i]):
        return None
    j = i + 1
    if j >= len(children) or not _is_nary_of(children[j], INTEGRAL_GLYPHS):
        return None
    j += 1
    if j >= len(children) or not is_run(children[j]):
        return None
    j += 1
    if j < len(children) and (run_text(children[j]) or '').replace(' ', '') == '1+':
        j += 1
    if j >= len(children) or not _is_nary_of(children[j], SUM_GLYPHS):
        return None
    j += 1
    if j >= len(children) or _text(children[j]) != close_c or not is_run(children[j]):
        return None
    return j


@repair_rule('rebuild_bracketed_fractions')
def rebuild_bracketed_fractions(root: etree._Element, state: RepairState) -> None:
    """
    Rebuilds "( ∫… / (1 + ∑…) )" when the converter flattened the fraction: the integral
    and the text after it become the numerator, the optional "1+" and the sum the denominator.
    """
    def rebuild_once(container: etree._Element) -> bool:
        children = list(container)
        for i in range(len(children)):
            end = _match_bracketed_fraction(children, i)
            if end is None:
                continue
            open_c, close_c = _text(children[i]), _text(children[end])
            _collapse(container, i, end + 1, lambda span: _create_delimiter_omml(
                open_c, close_c, [_create_fraction_omml(span[1:3], span[3:-1])]))
            return True
        return False

    if _rewrite_until_stable(root, rebuild_once):
        state.bracketed_fraction_rebuilt = True


def _promote_once(container: etree._Element) -> bool:
    children = list(container)
    for i in range(len(children) - 2):
        open_c = _text(children[i])
        close_c = OPEN_TO_CLOSE.get(open_c)
        if close_c is None or not is_run(children[i]):
            continue
        if is_tall(children[i + 1]) and is_run(children[i + 2]) and _text(children[i + 2]) == close_c:
            _collapse(container, i, i + 3, lambda span: _create_delimiter_omml(open_c, close_c, [span[1]]))
            return True
    return False


@repair_rule(PROMOTE_DELIMITERS)
def promote_delimiters(root: etree._Element, state: RepairState) -> None:
    """
    "open, tall construct, matching close" becomes one delimiter construct. Skipped when a
    bracketed fraction was rebuilt or the raw output already had a fraction under m:oMath.
    """
    if state.bracketed_fraction_rebuilt or state.raw_has_top_level_fraction:
        return
    _rewrite_until_stable(root, _promote_once)


@repair_rule('repair_invalid_scripts')
def repair_invalid_scripts(root: etree._Element, state: RepairState) -> None:
    """Scripts without a base are deleted; scripts missing a script slot are unwrapped to their base."""
    script_tags = [_m_tag(name) for name in SCRIPT_CONSTRUCTS]
    for _ in range(2):
        for script in reversed(list(root.iter(*script_tags))):
            parent = script.getparent()
            if parent is None:
                continue
            base = slot(script, 'e')
            if base is None:
                parent.remove(script)
                continue
            if any(slot(script, name) is None for name in REQUIRED_SCRIPT_SLOTS[local_name(script)]):
                index = parent.index(script)
                replace_span(parent, index, index + 1, list(base))


@repair_rule('remove_undefined_styles')
def remove_undefined_styles(root: etree._Element, state: RepairState) -> None:
    for el in list(root.iter()):
        parent = el.getparent()
        if parent is None or not (local_name(parent) or '').endswith('Pr'):
            continue
        if 'undefined' in (el.get(_m_tag('val')), el.get('val')):
            parent.remove(el)
    for rpr in list(root.iter(_m_tag('rPr'))):
        if len(rpr) == 0:
            rpr.getparent().remove(rpr)


@repair_rule('normalize_text_nodes')
def normalize_text_nodes(root: etree._Element, state: RepairState) -> None:
    for t in root.iter(_m_tag('t')):
        text = normalize_spaces(sanitize_xml_text(t.text or ''))
        t.text = text
        if text != text.strip() or '  ' in text:
            t.set(XML_SPACE, 'preserve')


# --- 3. 入口 ---
def _apply_rules(root: etree._Element, state: RepairState, skip: frozenset) -> None:
    for rule in REPAIR_RULES:
        if rule.name in skip:
            continue
        rule.apply(root, state)


def repair_omml(omml: str, skip: Iterable[str] = ()) -> Optional[str]:
    """
    Runs every registered rule over a converter fragment.

    Returns the repaired fragment, or None when the fragment is not well-formed XML (the
    caller keeps the raw converter output). When the repair loses a fraction that was
    present in the raw output, the rules are re-run without delimiter promotion.
    """
    skip = frozenset(skip)
    try:
        raw = parse_fragment(omml)
    except etree.XMLSyntaxError as e:
        logger.warning("OMML fragment is not well-formed, keeping converter output: %s", e)
        return None

    state = RepairState(raw_has_top_level_fraction=has_top_level_fraction(raw))
    repaired = copy.deepcopy(raw)
    _apply_rules(repaired, state, skip)

    if has_fraction(raw) and not has_fraction(repaired) and PROMOTE_DELIMITERS not in skip:
        logger.info("Repair dropped a fraction, re-running without %s", PROMOTE_DELIMITERS)
        state = RepairState(raw_has_top_level_fraction=has_top_level_fraction(raw))
        repaired = copy.deepcopy(raw)
        _apply_rules(repaired, state, skip | {PROMOTE_DELIMITERS})

    return serialize_fragment(repaired)
