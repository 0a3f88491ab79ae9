from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExtractionRules(BaseModel):
    """How one named value is pulled out of raw conversation text."""

    model_config = ConfigDict(extra="ignore")

    regex: List[str] = Field(default_factory=list)
    patterns: List[str] = Field(default_factory=list)
    validation_regex: Optional[str] = None
    # condition vocabulary; qualifying_values is the subset that qualifies
    known_values: List[str] = Field(default_factory=list)
    qualifying_values: List[str] = Field(default_factory=list)
    negation_patterns: List[str] = Field(default_factory=list)
    source_parameter: str = "condition"


class ExtractRequest(BaseModel):
    messages: Optional[List[dict]] = None
    force: bool = False


class ExtractResponse(BaseModel):
    conversation_id: str
    extracted: dict
    total_parameters: int
