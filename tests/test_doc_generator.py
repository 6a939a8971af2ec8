import io
import re
import zipfile

import pytest
from docx import Document
from lxml import etree

from mathdocx import doc_generator, omml_repair
from mathdocx.doc_generator import create_document
from mathdocx.omml_repair import RepairRule

KATEX_X = (
    '<span class="katex"><span class="katex-mathml"><math><semantics><mrow><mi>x</mi></mrow>'
    '<annotation encoding="application/x-tex">x</annotation></semantics></math></span>'
    '<span class="katex-html" aria-hidden="true"><span class="mord">x</span></span></span>'
)
KATEX_SUM_DISPLAY = (
    '<span class="katex-display"><span class="katex"><span class="katex-mathml"><math display="block">'
    '<semantics><mrow><mo>∑</mo></mrow><annotation encoding="application/x-tex">\\sum_i a_i</annotation>'
    '</semantics></math></span><span class="katex-html" aria-hidden="true">∑</span></span></span>'
)
OMML_X = '<m:oMath><m:r><m:t>x</m:t></m:r></m:oMath>'


@pytest.fixture
def omml_stub(monkeypatch):
    """Every math element converts to a single-run OMML fragment."""
    monkeypatch.setattr(doc_generator, 'build_omml_from_element', lambda el: OMML_X)


@pytest.fixture
def failing_omml(monkeypatch):
    monkeypatch.setattr(doc_generator, 'build_omml_from_element', lambda el: None)


def document_xml(docx_bytes: bytes) -> str:
    with zipfile.ZipFile(io.BytesIO(docx_bytes)) as zf:
        return zf.read('word/document.xml').decode('utf-8')


def paragraphs(docx_bytes: bytes):
    return Document(io.BytesIO(docx_bytes)).paragraphs


def test_inline_math_is_spliced_into_its_paragraph(omml_stub):
    docx_bytes = create_document(f'<p>Let {KATEX_X} be real.</p>')
    xml = document_xml(docx_bytes)

    assert not re.search(r'__MATH_\d{6}__', xml)
    assert xml.count('<m:oMath>') == 1
    assert re.search(r'Let </w:t></w:r><m:oMath>', xml)
    assert [p.text for p in paragraphs(docx_bytes)] == ['Let  be real.']


def test_display_math_gets_centered_math_paragraph(omml_stub):
    docx_bytes = create_document(f'<p>Sum:</p>{KATEX_SUM_DISPLAY}')
    xml = document_xml(docx_bytes)

    assert '<m:oMathPara><m:oMath>' in xml
    assert '<w:jc w:val="center"/>' in xml


def test_every_math_element_gets_its_own_placeholder(omml_stub):
    html = f'<p>{KATEX_X} and {KATEX_X}</p><ul><li>item {KATEX_X}</li></ul>'
    xml = document_xml(create_document(html))
    assert xml.count('<m:oMath>') == 3
    assert '__MATH_' not in xml


def test_unconvertible_math_falls_back_to_latex_text(failing_omml):
    docx_bytes = create_document(f'<p>Value {KATEX_SUM_DISPLAY}</p>')
    xml = document_xml(docx_bytes)

    assert '<m:oMath' not in xml
    assert '__MATH_' not in xml
    assert '\\sum_i a_i' in xml
    assert 'Consolas' in xml


def test_headings_lists_and_inline_marks(failing_omml):
    html = ('<h2>Title</h2><p><strong>bold</strong> and <em>italic</em> and <code>code()</code></p>'
            '<ol><li>first<ul><li>nested</li></ul></li><li>second</li></ol>')
    doc = Document(io.BytesIO(create_document(html)))
    paras = doc.paragraphs

    assert paras[0].text == 'Title'
    assert paras[0].style.name == 'Heading 2'

    runs = {run.text: run for run in paras[1].runs}
    assert runs['bold'].bold is True
    assert runs['italic'].italic is True
    assert runs['code()'].font.name == 'Consolas'

    styled = [(p.text, p.style.name) for p in paras[2:]]
    assert styled == [('first', 'List Number'), ('nested', 'List Bullet 2'), ('second', 'List Number')]


def test_table_header_is_bold_and_shaded(failing_omml):
    html = ('<table><thead><tr><th>Name</th><th>Value</th></tr></thead>'
            '<tbody><tr><td>a</td><td>1</td></tr><tr><td>b</td></tr></tbody></table>')
    docx_bytes = create_document(html)
    table = Document(io.BytesIO(docx_bytes)).tables[0]

    assert len(table.rows) == 3
    assert len(table.columns) == 2
    assert table.cell(0, 0).text == 'Name'
    assert table.cell(0, 0).paragraphs[0].runs[0].bold is True
    assert table.cell(1, 1).text == '1'
    assert table.cell(2, 1).text == ''
    assert 'w:fill="E2E8F0"' in document_xml(docx_bytes)


def test_code_block_keeps_lines(failing_omml):
    docx_bytes = create_document('<pre><code>def f():\n    return 1\n</code></pre>')
    paragraph = paragraphs(docx_bytes)[0]

    assert paragraph.text == 'def f():\n    return 1'
    assert all(run.font.name == 'Consolas' for run in paragraph.runs)
    assert '<w:pBdr>' in document_xml(docx_bytes)


def test_whitespace_between_blocks_makes_no_empty_paragraphs(failing_omml):
    docx_bytes = create_document('<p>one</p>\n\n   <p>two</p>\n')
    assert [p.text for p in paragraphs(docx_bytes)] == ['one', 'two']


def test_loose_inline_content_shares_one_paragraph(omml_stub):
    docx_bytes = create_document(f'Text {KATEX_X} <b>more</b>')
    assert len(paragraphs(docx_bytes)) == 1


def test_invalid_xml_characters_are_removed(failing_omml):
    docx_bytes = create_document('<p>a\x07b\u200bc</p>')
    assert paragraphs(docx_bytes)[0].text == 'abc'


def test_math_font_is_set_in_settings(failing_omml):
    with zipfile.ZipFile(io.BytesIO(create_document('<p>x</p>'))) as zf:
        settings_xml = zf.read('word/settings.xml').decode('utf-8')
    assert re.search(r'<m:mathFont m:val="Cambria Math"/>', settings_xml)


def code_font_texts(docx_bytes: bytes):
    runs = (run for p in paragraphs(docx_bytes) for run in p.runs)
    return [run.text for run in runs if run.font.name == 'Consolas']


@pytest.mark.parametrize("html, latex", [
    # no embedded MathML and LaTeX that does not compile
    ('<p>Broken <span class="katex" title="\\alpha^">\\alpha^</span></p>', '\\alpha^'),
    # stretchy accent: the converter emits malformed OMML for it
    ('<p>Velocity <span class="katex" title="\\vec{v}">err</span></p>', '\\vec{v}'),
])
def test_unrenderable_math_degrades_to_latex_text(html, latex):
    docx_bytes = create_document(html)
    xml = document_xml(docx_bytes)

    etree.fromstring(xml.encode('utf-8'))
    assert '__MATH_' not in xml
    assert latex in code_font_texts(docx_bytes)


def test_error_inside_one_element_does_not_abort_export(monkeypatch):
    def broken_rule(root, state):
        raise RuntimeError("rule crashed")

    monkeypatch.setattr(omml_repair, 'REPAIR_RULES', [RepairRule('broken', broken_rule)])
    docx_bytes = create_document(f'<h1>Title</h1><p>Let {KATEX_X} be real.</p>')
    xml = document_xml(docx_bytes)

    etree.fromstring(xml.encode('utf-8'))
    assert '<m:oMath' not in xml
    assert code_font_texts(docx_bytes) == ['x']
    assert paragraphs(docx_bytes)[0].text == 'Title'
