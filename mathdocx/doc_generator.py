# mathdocx/doc_generator.py
import io
import logging
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt

from .config import settings
from .docx_patcher import patch_docx_with_math
from .math_context import MathContext
from .math_source import build_omml_from_element, fallback_latex_text, is_display_math, is_math_element
from .text_utils import normalize_preserve_whitespace, normalize_text, sanitize_xml_text

logger = logging.getLogger(__name__)

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

HEADING_TAGS = {'h1': 1, 'h2': 2, 'h3': 3, 'h4': 4, 'h5': 5, 'h6': 6}
LIST_TAGS = ('ul', 'ol')
BLOCK_TAGS = frozenset({
    'p', 'div', 'ul', 'ol', 'li', 'table', 'pre', 'blockquote', 'section', 'article',
    'header', 'footer', 'main', 'aside', 'figure', 'hr', *HEADING_TAGS,
})
BOLD_TAGS = ('strong', 'b', 'th')
ITALIC_TAGS = ('em', 'i')
CODE_TAGS = ('code', 'kbd', 'samp')

PARAGRAPH_SPACE_AFTER = Pt(8)
TABLE_BORDER_COLOR = "CBD5F5"
TABLE_HEADER_FILL = "E2E8F0"
CODE_BLOCK_BORDER_COLOR = "1E293B"
CODE_BLOCK_FILL = "F1F5F9"

# pPr children that must come after w:pBdr / w:shd
PPR_AFTER_PBDR = ('w:shd', 'w:tabs', 'w:suppressAutoHyphens', 'w:kinsoku', 'w:wordWrap', 'w:overflowPunct',
                  'w:topLinePunct', 'w:autoSpaceDE', 'w:autoSpaceDN', 'w:bidi', 'w:adjustRightInd',
                  'w:snapToGrid', 'w:spacing', 'w:ind', 'w:contextualSpacing', 'w:mirrorIndents',
                  'w:suppressOverlap', 'w:jc', 'w:textDirection', 'w:textAlignment', 'w:textboxTightWrap',
                  'w:outlineLvl', 'w:divId', 'w:cnfStyle', 'w:rPr', 'w:sectPr', 'w:pPrChange')
PPR_AFTER_SHD = PPR_AFTER_PBDR[1:]
TBLPR_AFTER_BORDERS = ('w:shd', 'w:tblLayout', 'w:tblCellMar', 'w:tblLook', 'w:tblCaption',
                       'w:tblDescription', 'w:tblPrChange')
TCPR_AFTER_SHD = ('w:noWrap', 'w:tcMar', 'w:textDirection', 'w:tcFitText', 'w:vAlign', 'w:hideMark',
                  'w:headers', 'w:cellIns', 'w:cellDel', 'w:cellMerge', 'w:tcPrChange')
SETTINGS_AFTER_MATHPR = ('w:attachedSchema', 'w:themeFontLang', 'w:clrSchemeMapping', 'w:doNotIncludeSubdocsInStats',
                         'w:doNotAutoCompressPictures', 'w:forceUpgrade', 'w:captions', 'w:readModeInkLockDown',
                         'w:smartTagType', 'w:shapeDefaults', 'w:doNotEmbedSmartTags', 'w:decimalSymbol',
                         'w:listSeparator')


# --- 1. 底层格式辅助函数 ---
def _is_text(node) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def _classes(tag: Tag) -> List[str]:
    return tag.get('class') or []


def _set_run_font(run, font_name: str):
    run.font.name = font_name
    # 设置东亚字体以确保字体生效
    rpr = run._r.get_or_add_rPr()
    rFonts = rpr.get_or_add_rFonts()
    rFonts.set(qn('w:eastAsia'), font_name)


def _add_paragraph(container, style: Optional[str] = None):
    try:
        paragraph = container.add_paragraph(style=style)
    except KeyError:
        logger.warning("警告：找不到名为 '%s' 的样式，已忽略样式设置。", style)
        paragraph = container.add_paragraph()
    paragraph.paragraph_format.space_after = PARAGRAPH_SPACE_AFTER
    return paragraph


def _discard_if_empty(paragraph) -> bool:
    if paragraph.runs:
        return False
    p = paragraph._p
    p.getparent().remove(p)
    return True


def _border_element(tag: str, color: str, size: int) -> OxmlElement:
    border_el = OxmlElement(tag)
    border_el.set(qn('w:val'), 'single')
    border_el.set(qn('w:sz'), str(size))
    border_el.set(qn('w:space'), '0')
    border_el.set(qn('w:color'), color)
    return border_el


def _shading_element(fill: str) -> OxmlElement:
    shd = OxmlElement('w:shd')
    shd.set(qn('w:val'), 'clear')
    shd.set(qn('w:color'), 'auto')
    shd.set(qn('w:fill'), fill)
    return shd


def _set_paragraph_box(paragraph, border_color: str, fill: str):
    """Single border on all four sides plus background shading, for code blocks."""
    pPr = paragraph._p.get_or_add_pPr()
    pBdr = OxmlElement('w:pBdr')
    for border_name in ['top', 'left', 'bottom', 'right']:
        pBdr.append(_border_element(f'w:{border_name}', border_color, 6))
    pPr.insert_element_before(pBdr, *PPR_AFTER_PBDR)
    pPr.insert_element_before(_shading_element(fill), *PPR_AFTER_SHD)


def _set_table_borders(table, color: str = TABLE_BORDER_COLOR):
    """
    通过操作XML属性，为表格所有边框（含内部网格线）应用细实线，并将表宽设为100%。

    Args:
        table: python-docx的Table对象。
    """
    tblPr = table._tbl.tblPr
    tblW = tblPr.find(qn('w:tblW'))
    if tblW is not None:
        tblW.set(qn('w:type'), 'pct')
        tblW.set(qn('w:w'), '5000')

    tblBorders = OxmlElement('w:tblBorders')
    for border_name in ['top', 'left', 'bottom', 'right', 'insideH', 'insideV']:
        tblBorders.append(_border_element(f'w:{border_name}', color, 4))
    tblPr.insert_element_before(tblBorders, *TBLPR_AFTER_BORDERS)


def _shade_cell(cell, fill: str):
    tcPr = cell._tc.get_or_add_tcPr()
    tcPr.insert_element_before(_shading_element(fill), *TCPR_AFTER_SHD)


def _set_math_font(doc, font_name: str):
    """Document-wide equation font (``m:mathPr/m:mathFont`` in settings.xml)."""
    settings_el = doc.settings.element
    mathPr = settings_el.find(qn('m:mathPr'))
    if mathPr is None:
        mathPr = OxmlElement('m:mathPr')
        settings_el.insert_element_before(mathPr, *SETTINGS_AFTER_MATHPR)
    mathFont = mathPr.find(qn('m:mathFont'))
    if mathFont is None:
        mathFont = OxmlElement('m:mathFont')
        mathPr.insert(0, mathFont)
    mathFont.set(qn('m:val'), font_name)


# --- 2. 公式占位符 ---
def add_math_run(paragraph, el: Tag, ctx: MathContext) -> bool:
    """
    Adds the placeholder run for a KaTeX element, or a literal code-font fallback when no
    OMML can be produced. Returns True when a placeholder was registered.
    """
    try:
        omml = build_omml_from_element(el)
    except Exception as e:
        logger.error("公式转换失败，保留 LaTeX 文本: %s", e, exc_info=True)
        omml = None
    if omml:
        paragraph.add_run(ctx.register(omml, is_display_math(el)))
        return True

    fallback = sanitize_xml_text(fallback_latex_text(el))
    if fallback:
        _set_run_font(paragraph.add_run(fallback), settings.code_font)
    return False


# --- 3. 行内内容 ---
def add_inline_nodes(paragraph, nodes: Iterable, ctx: MathContext,
                     bold: bool = False, italic: bool = False, code: bool = False):
    for node in nodes:
        if _is_text(node):
            text = normalize_text(str(node))
            if not text:
                continue
            run = paragraph.add_run(text)
            if bold:
                run.bold = True
            if italic:
                run.italic = True
            if code:
                _set_run_font(run, settings.code_font)
            continue

        if not isinstance(node, Tag):
            continue

        if is_math_element(node):
            add_math_run(paragraph, node, ctx)
            continue
        if 'katex-html' in _classes(node):
            continue

        name = node.name
        if name == 'br':
            paragraph.add_run().add_break()
            continue
        add_inline_nodes(
            paragraph, node.children, ctx,
            bold=bold or name in BOLD_TAGS,
            italic=italic or name in ITALIC_TAGS,
            code=code or name in CODE_TAGS,
        )


def _is_inline(node) -> bool:
    if _is_text(node):
        return True
    if not isinstance(node, Tag):
        return False
    if is_math_element(node):
        return not is_display_math(node)
    return node.name not in BLOCK_TAGS


def _has_block_children(tag: Tag) -> bool:
    return any(isinstance(child, Tag) and not _is_inline(child) for child in tag.children)


def _flush_inline(container, pending: List, ctx: MathContext, style: Optional[str] = None, bold: bool = False):
    if not pending:
        return
    if any(not _is_text(node) or normalize_text(str(node)).strip() for node in pending):
        paragraph = _add_paragraph(container, style)
        add_inline_nodes(paragraph, pending, ctx, bold=bold)
        _discard_if_empty(paragraph)
    pending.clear()


# --- 4. 块级内容 ---
def add_blocks(container, nodes: Iterable, ctx: MathContext, list_level: int = 0, bold: bool = False):
    """Adds a sequence of sibling nodes; consecutive inline nodes share one paragraph."""
    pending = []
    for node in nodes:
        if _is_inline(node):
            pending.append(node)
            continue
        _flush_inline(container, pending, ctx, bold=bold)
        if isinstance(node, Tag):
            add_block(container, node, ctx, list_level=list_level, bold=bold)
    _flush_inline(container, pending, ctx, bold=bold)


def add_code_block(container, code: str):
    normalized = normalize_preserve_whitespace(code).replace('\r\n', '\n').replace('\r', '\n')
    if normalized.endswith('\n'):
        normalized = normalized[:-1]

    paragraph = _add_paragraph(container)
    lines = normalized.split('\n')
    for i, line in enumerate(lines):
        run = paragraph.add_run(line)
        _set_run_font(run, settings.code_font)
        if i < len(lines) - 1:
            run.add_break()

    p_format = paragraph.paragraph_format
    p_format.space_before = Pt(4)
    p_format.left_indent = Pt(9)
    p_format.right_indent = Pt(9)
    _set_paragraph_box(paragraph, CODE_BLOCK_BORDER_COLOR, CODE_BLOCK_FILL)


def add_list_from_html(container, list_el: Tag, ctx: MathContext, list_level: int = 0):
    """
    根据 <ul>/<ol> 元素，在文档中添加一个有序或无序列表。
    嵌套列表使用 'List Bullet 2' / 'List Number 3' 等内置样式表示层级（最多三级）。
    """
    level = list_level + 1
    base_style = 'List Number' if list_el.name == 'ol' else 'List Bullet'
    style = base_style if level == 1 else f'{base_style} {min(level, 3)}'

    for item in list_el.find_all('li', recursive=False):
        inline_nodes = [child for child in item.children
                        if not (isinstance(child, Tag) and child.name in LIST_TAGS)]
        paragraph = _add_paragraph(container, style)
        add_inline_nodes(paragraph, inline_nodes, ctx)
        if not paragraph.runs:
            # keep the bullet for an item that only holds a nested list
            paragraph.add_run('')
        for nested in item.find_all(LIST_TAGS, recursive=False):
            add_list_from_html(container, nested, ctx, list_level=level)


def _own_rows(table_el: Tag) -> List[Tag]:
    return [tr for tr in table_el.find_all('tr') if tr.find_parent('table') is table_el]


def add_table_from_html(container, table_el: Tag, ctx: MathContext):
    """
    根据 <table> 元素，在文档中添加一个表格。表头行（<thead> 中的第一行，否则为第一行）加粗并着色。

    Args:
        container: python-docx的Document或单元格对象。
        table_el: BeautifulSoup的<table>元素。
        ctx: 公式占位符上下文。
    """
    rows = _own_rows(table_el)
    if not rows:
        logger.warning("警告：表格数据为空或格式不正确，跳过此表格。")
        return

    header_row = next((tr for tr in rows if tr.find_parent('thead') is not None), rows[0])
    ordered_rows = [header_row] + [tr for tr in rows if tr is not header_row]
    col_count = max(len(tr.find_all(['th', 'td'], recursive=False)) for tr in ordered_rows) or 1

    table = container.add_table(len(ordered_rows), col_count)
    try:
        table.style = 'Table Grid'
    except KeyError:
        logger.warning("警告：找不到名为 'Table Grid' 的表格样式，使用默认样式。")
    _set_table_borders(table)

    for r, tr in enumerate(ordered_rows):
        is_header = tr is header_row
        cells = tr.find_all(['th', 'td'], recursive=False)
        for c in range(col_count):
            cell = table.cell(r, c)
            if c < len(cells):
                add_blocks(cell, cells[c].children, ctx, bold=is_header)
            # python-docx 单元格自带一个空段落；有内容时删除它
            if len(cell.paragraphs) > 1:
                _discard_if_empty(cell.paragraphs[0])
            if is_header:
                _shade_cell(cell, TABLE_HEADER_FILL)


def add_block(container, el: Tag, ctx: MathContext, list_level: int = 0, bold: bool = False):
    if is_math_element(el):
        paragraph = _add_paragraph(container)
        if is_display_math(el):
            paragraph.paragraph_format.alignment = WD_ALIGN_PARAGRAPH.CENTER
        add_math_run(paragraph, el, ctx)
        _discard_if_empty(paragraph)
        return

    name = el.name
    if name in HEADING_TAGS:
        paragraph = _add_paragraph(container, f'Heading {HEADING_TAGS[name]}')
        add_inline_nodes(paragraph, el.children, ctx)
        _discard_if_empty(paragraph)
    elif name in LIST_TAGS:
        add_list_from_html(container, el, ctx, list_level=list_level)
    elif name == 'li':
        paragraph = _add_paragraph(container, 'List Bullet')
        add_inline_nodes(paragraph, el.children, ctx)
    elif name == 'table':
        add_table_from_html(container, el, ctx)
    elif name == 'pre':
        add_code_block(container, el.get_text())
    elif name == 'blockquote':
        paragraph = _add_paragraph(container)
        paragraph.paragraph_format.left_indent = Pt(18)
        add_inline_nodes(paragraph, el.children, ctx, italic=True)
        _discard_if_empty(paragraph)
    elif name == 'hr':
        return
    elif name == 'p' or not _has_block_children(el):
        paragraph = _add_paragraph(container)
        add_inline_nodes(paragraph, el.children, ctx, bold=bold)
        _discard_if_empty(paragraph)
    else:
        add_blocks(container, el.children, ctx, list_level=list_level, bold=bold)


# --- 5. 入口 ---
def create_document(html: str) -> bytes:
    """
    根据 KaTeX 渲染后的 HTML 创建 Word 文档，并将公式写为原生 OMML。

    Args:
        html (str): 聊天消息或文档片段的 HTML。

    Returns:
        bytes: 最终生成的Word文档的字节流。

    Raises:
        ValueError: HTML 无法解析出根节点。
    """
    soup = BeautifulSoup(f'<div>{html}</div>', 'html.parser')
    root = soup.find('div')
    if root is None:
        raise ValueError("Invalid HTML")

    ctx = MathContext()
    doc = Document()
    _set_math_font(doc, settings.math_font)
    add_blocks(doc, list(root.children), ctx)

    stream = io.BytesIO()
    doc.save(stream)
    logger.info("文档主体生成完毕，共 %d 个公式占位符。", len(ctx))
    return patch_docx_with_math(stream.getvalue(), ctx.replacements)
