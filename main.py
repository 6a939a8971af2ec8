# main.py

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from mathdocx.config import settings
from mathdocx.doc_generator import DOCX_MIME_TYPE, create_document
from mathdocx.logger import init_logging
from mathdocx.math_source import latex_to_omml
from mathdocx.schemas import ExportRequest, OmmlRequest, OmmlResponse

init_logging()
logger = logging.getLogger("mathdocx.api")

app = FastAPI(
    title="KaTeX → DOCX 导出 API",
    description="将 KaTeX 渲染的 HTML 导出为带原生 Word 公式 (OMML) 的 DOCX 文档",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    """
    根路径，用于检查API服务是否正常运行。

    Returns:
        dict: 包含欢迎信息的字典。
    """
    return {"message": "KaTeX → DOCX 导出 API 运行正常！"}


@app.post("/docx")
def export_docx_endpoint(request: ExportRequest):
    """
    接收 KaTeX 渲染后的 HTML，返回 DOCX 文件。公式以原生 OMML 写入，无法转换的公式保留为 LaTeX 文本。
    """
    if not request.html or not request.html.strip():
        raise HTTPException(status_code=400, detail="Missing HTML")

    try:
        docx_bytes = create_document(request.html)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("DOCX export error")
        raise HTTPException(status_code=500, detail="Failed to generate DOCX")

    return Response(
        content=docx_bytes,
        media_type=DOCX_MIME_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{settings.export_filename}"'},
    )


@app.post("/omml", response_model=OmmlResponse)
def latex_to_omml_endpoint(request: OmmlRequest):
    """Converts one LaTeX formula to an OMML fragment; ``omml`` is null when conversion fails."""
    if not request.latex.strip():
        raise HTTPException(status_code=400, detail="LaTeX cannot be empty.")
    return OmmlResponse(omml=latex_to_omml(request.latex, request.display_mode))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
