# mathdocx/schemas.py

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

# ==============================================================================
# SECTION 1: MATH PIPELINE MODELS
# ==============================================================================
class MathElement(BaseModel):
    """The math sources recovered from one rendered KaTeX element."""
    latex: Optional[str] = None
    mathml: Optional[str] = None
    display_mode: bool = False


class MathReplacement(BaseModel):
    """One placeholder token and the OMML that replaces the run carrying it."""
    model_config = ConfigDict(populate_by_name=True)

    token: str
    omml: str
    display_mode: bool = Field(False, alias='displayMode')


# ==============================================================================
# SECTION 2: API REQUEST / RESPONSE MODELS
# ==============================================================================
class ExportRequest(BaseModel): html: Optional[str] = None
class OmmlRequest(BaseModel): latex: str; display_mode: bool = False
class OmmlResponse(BaseModel): omml: Optional[str] = None
