# mathdocx/docx_patcher.py
"""
Replaces the placeholder runs of a generated DOCX with native OMML.

python-docx has no API for math, so the document is first written with one plain text
run per equation (``__MATH_000001__`` ...). Afterwards the package is unpacked and each
run that carries a token is swapped for the equation's ``m:oMath`` (or ``m:oMathPara``
for display math) at the string level.
"""
import io
import logging
import os
import re
import shutil
import tempfile
import zipfile
from typing import Iterable, List, Optional, Tuple, Union

from .omml_builders import M_NAMESPACE
from .schemas import MathReplacement
from .text_utils import sanitize_xml_text

logger = logging.getLogger(__name__)

DOCUMENT_PART = os.path.join('word', 'document.xml')

DOCUMENT_OPEN_RE = re.compile(r'<w:document\b([^>]*)>')
OMML_NS_DECLARATION_RE = re.compile(r'\s+xmlns:[mw]="[^"]*"')
BARE_AMPERSAND_RE = re.compile(r'&(?!(?:amp|lt|gt|quot|apos);|#\d+;|#x[0-9a-fA-F]+;)')
RUN_OPEN = '<w:r'
RUN_CLOSE = '</w:r>'


def ensure_math_namespace(document_xml: str) -> str:
    """Declares ``xmlns:m`` on the document root when it is missing."""
    match = DOCUMENT_OPEN_RE.search(document_xml)
    if match is None or 'xmlns:m=' in match.group(1):
        return document_xml
    attributes = match.group(1)
    opening = f'<w:document{attributes} xmlns:m="{M_NAMESPACE}">'
    return document_xml[:match.start()] + opening + document_xml[match.end():]


def sanitize_omml(omml: str) -> str:
    """Drops per-fragment m:/w: declarations and escapes stray ampersands."""
    omml = OMML_NS_DECLARATION_RE.sub('', sanitize_xml_text(omml))
    return BARE_AMPERSAND_RE.sub('&amp;', omml)


def wrap_omml(omml: str, display_mode: bool) -> str:
    body = omml.strip()
    if not body.startswith('<m:oMath'):
        body = f'<m:oMath>{body}</m:oMath>'
    if display_mode and not body.startswith('<m:oMathPara'):
        body = f'<m:oMathPara>{body}</m:oMathPara>'
    return body


def find_enclosing_run(document_xml: str, index: int) -> Optional[Tuple[int, int]]:
    """
    Bounds of the ``<w:r>`` element around ``index``, or None when the position is not
    inside a run. ``<w:rPr>``, ``<w:rFonts>`` and friends are not mistaken for a run start.
    """
    start = document_xml.rfind(RUN_OPEN, 0, index)
    while start != -1 and document_xml[start + len(RUN_OPEN)] not in ' >':
        start = document_xml.rfind(RUN_OPEN, 0, start)
    if start == -1:
        return None
    end = document_xml.find(RUN_CLOSE, start)
    if end == -1 or end < index:
        return None
    return start, end + len(RUN_CLOSE)


def _as_replacement(item: Union[MathReplacement, dict]) -> MathReplacement:
    return item if isinstance(item, MathReplacement) else MathReplacement.model_validate(item)


def splice_math(document_xml: str, replacements: Iterable[Union[MathReplacement, dict]]) -> str:
    """
    Swaps every run containing a token for its OMML.

    Tokens that cannot be located (or are not inside a run) are skipped with a warning and
    stay visible in the document.
    """
    items: List[MathReplacement] = [_as_replacement(item) for item in replacements]
    if not items:
        return document_xml

    xml = ensure_math_namespace(document_xml)
    for item in items:
        index = xml.find(item.token)
        if index == -1:
            logger.warning("警告: 在 document.xml 中未找到占位符 '%s'。", item.token)
            continue
        bounds = find_enclosing_run(xml, index)
        if bounds is None:
            logger.warning("警告: 占位符 '%s' 不在 <w:r> 中，跳过。", item.token)
            continue
        start, end = bounds
        xml = xml[:start] + wrap_omml(sanitize_omml(item.omml), item.display_mode) + xml[end:]
        logger.debug("  > 找到并替换公式占位符: '%s'", item.token)
    return xml


def patch_docx_with_math(docx_bytes: bytes, replacements: Iterable[Union[MathReplacement, dict]]) -> bytes:
    """
    通过解压、替换 document.xml 中的占位符 run、再重新打包的方式，为DOCX文件写入 OMML 公式。

    Args:
        docx_bytes (bytes): 包含占位符的原始DOCX文件字节流。
        replacements: 占位符与 OMML 的对应列表。

    Returns:
        bytes: 写入公式后的DOCX文件字节流。
    """
    items = [_as_replacement(item) for item in replacements]
    if not items:
        return docx_bytes

    logger.info("--- 开始公式XML后处理阶段: %d 个占位符 ---", len(items))

    temp_dir = tempfile.mkdtemp()
    try:
        with zipfile.ZipFile(io.BytesIO(docx_bytes), 'r') as zip_ref:
            zip_ref.extractall(temp_dir)

        document_path = os.path.join(temp_dir, DOCUMENT_PART)
        with open(document_path, 'r', encoding='utf-8') as f:
            document_xml = f.read()

        document_xml = splice_math(document_xml, items)

        with open(document_path, 'w', encoding='utf-8') as f:
            f.write(document_xml)

        # 将整个目录重新打包成 .docx 文件的字节流
        output_stream = io.BytesIO()
        with zipfile.ZipFile(output_stream, 'w', zipfile.ZIP_DEFLATED) as zipf:
            for root, _, files in os.walk(temp_dir):
                for file in files:
                    file_path = os.path.join(root, file)
                    archive_name = os.path.relpath(file_path, temp_dir).replace(os.sep, '/')
                    zipf.write(file_path, archive_name)
        return output_stream.getvalue()
    finally:
        shutil.rmtree(temp_dir)
