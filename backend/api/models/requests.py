"""
Pydantic request models for API endpoints.
"""
from pydantic import BaseModel, Field
from typing import List

from models.tooltip_models import SubjectContext


class TooltipRunRequest(BaseModel):
    """Request model for a tooltip run."""
    terms: List[str] = Field(..., description="Terms to explain, in display order")
    subject: str = Field(default="", description="Subject the terms belong to")
    module_title: str = Field(default="", description="Title of the module being read")
    module_description: str = Field(default="", description="Short description of the module")

    def to_context(self) -> SubjectContext:
        return SubjectContext(
            subject=self.subject,
            module_title=self.module_title,
            module_description=self.module_description,
        )
