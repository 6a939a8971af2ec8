# run_from_html.py

import argparse
import logging

from mathdocx.doc_generator import create_document
from mathdocx.logger import init_logging

# 定义默认输入和输出文件名
INPUT_HTML_FILE = 'data/export.html'
OUTPUT_DOCX_FILE = 'output_from_html.docx'

logger = logging.getLogger("mathdocx.cli")


def main(argv=None):
    """
    从本地 KaTeX HTML 文件生成 Word 文档的主函数。
    """
    parser = argparse.ArgumentParser(description="Export KaTeX-rendered HTML to DOCX with native equations.")
    parser.add_argument('input', nargs='?', default=INPUT_HTML_FILE, help="HTML file to export")
    parser.add_argument('-o', '--output', default=OUTPUT_DOCX_FILE, help="DOCX file to write")
    parser.add_argument('--log-level', default=None, help="DEBUG, INFO, WARNING ...")
    args = parser.parse_args(argv)

    init_logging(args.log_level)
    logger.info("📄 正在从 '%s' 读取数据...", args.input)

    # 1. 加载本地 HTML
    try:
        with open(args.input, 'r', encoding='utf-8') as f:
            html = f.read()
    except (FileNotFoundError, UnicodeDecodeError) as e:
        logger.error("错误：无法读取HTML文件 -> %s", e)
        return 1

    # 2. 调用核心引擎创建文档
    logger.info("⚙️ 正在调用文档生成引擎...")
    try:
        docx_bytes = create_document(html)
    except ValueError as e:
        logger.error("错误：HTML 无法解析 -> %s", e)
        return 1

    # 3. 保存文档
    with open(args.output, 'wb') as f:
        f.write(docx_bytes)
    logger.info("🎉 成功将文档保存为 '%s'！", args.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
