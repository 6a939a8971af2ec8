# mathdocx/__init__.py
"""KaTeX HTML to DOCX export with native OMML equations."""
