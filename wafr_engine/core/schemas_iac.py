"""Schemas for IaC document generation and best-practice detail enrichment."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

# Marker that ends the section-by-section generation loop
END_OF_IAC_GENERATION = "<end_of_iac_document_generation>"
IAC_TRUNCATED = "<message_truncated>"

# Markers of the per-item details loop
END_OF_DETAILS_GENERATION = "<end_of_details_generation>"
DETAILS_TRUNCATED = "<details_truncated>"

# Order given to a section whose header carries no number
DEFAULT_SECTION_ORDER = 999


class IaCTemplateType(str, Enum):
    """Kinds of IaC document that can be generated."""
    CLOUDFORMATION_YAML = "CloudFormation (yaml)"
    CLOUDFORMATION_JSON = "CloudFormation (json)"
    TERRAFORM = "Terraform (tf)"


class DocumentSection(BaseModel):
    """One numbered part of a generated IaC document."""
    content: str
    order: int = DEFAULT_SECTION_ORDER
    description: str = "Unnamed Section"


class SectionBatch(BaseModel):
    """Sections parsed from one generation turn."""
    is_complete: bool = False
    sections: list[DocumentSection] = Field(default_factory=list)


class DetailsChunk(BaseModel):
    """Usable markdown from one details turn."""
    content: str = ""
    is_complete: bool = False


class ImplementationProgressEvent(BaseModel):
    """Progress notification for generation and detail runs."""
    type: str = "implementation_progress"
    status: str
    progress: int


class GenerationOutcome(BaseModel):
    """Terminal outcome of an IaC generation run."""
    content: str = ""
    is_cancelled: bool = False
    error: Optional[str] = None
    file_id: Optional[str] = None
    status: str = "COMPLETED"


class DetailsOutcome(BaseModel):
    """Combined detail analysis for the selected best practices."""
    content: str = ""
    error: Optional[str] = None


class GenerateIacRequest(BaseModel):
    """Request to synthesise an IaC document from a stored diagram."""
    file_id: str
    recommendations: list[dict[str, Any]] = Field(default_factory=list)
    template_type: IaCTemplateType = IaCTemplateType.CLOUDFORMATION_YAML


class MoreDetailsRequest(BaseModel):
    """Request for detailed guidance on selected best-practice verdicts."""
    file_id: str
    selected_items: list[dict[str, Any]] = Field(..., min_length=1)
    template_type: Optional[IaCTemplateType] = None
