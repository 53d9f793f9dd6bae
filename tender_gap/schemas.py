"""
schemas.py — Pydantic v2 models for rules, findings and analysis output.

Fields are snake_case in Python and camelCase on the wire (the web
frontend was built against camelCase keys). Always dump with
`by_alias=True` when producing API output.

Every optional document field defaults to the NOT_IDENTIFIABLE sentinel
instead of None so the frontend never has to special-case nulls.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

NOT_IDENTIFIABLE = "Not identifiable from the document."

# Reserved section key that always maps to the complete document text.
FULL_SECTION = "FULL"


class GapCategory(str, Enum):
    """The nine fixed buckets findings and recommendations are grouped by."""
    ADMINISTRATIVE = "Administrative"
    TECHNICAL = "Technical"
    FINANCIAL = "Financial"
    SUPPORT_SLA = "Support/SLA"
    COMPLIANCE = "Compliance"
    GOVERNANCE = "Governance"
    RISK_MANAGEMENT = "Risk Management"
    INTEGRATION = "Integration"
    KPI_PERFORMANCE = "KPI & Performance"

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["GapCategory"]:
        """Case-insensitive lookup by display label. None if unknown."""
        if not label:
            return None
        wanted = str(label).strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return None

    @classmethod
    def labels(cls) -> List[str]:
        return [member.value for member in cls]


class FindingKind(str, Enum):
    MISSING = "Missing"
    WEAK = "Weak"
    UNCLEAR = "Unclear"
    OUTDATED = "Outdated"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Rule(BaseModel):
    """
    One keyword rule. Patterns are case-insensitive regexes.

    Wire keys stay snake_case here because the /keywords endpoint has
    always returned rules in the same shape as the rule workbook columns.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    category: GapCategory
    where: List[str] = Field(default_factory=lambda: [FULL_SECTION])
    presence: List[str]
    quality_requires: List[str] = Field(default_factory=list)
    unclear_triggers: List[str] = Field(default_factory=list)
    outdated_triggers: List[str] = Field(default_factory=list)
    required: bool = False

    @field_validator("where")
    @classmethod
    def where_defaults_to_full(cls, v: List[str]) -> List[str]:
        return v or [FULL_SECTION]

    @field_validator("presence")
    @classmethod
    def presence_must_not_be_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("presence must contain at least one pattern")
        return v


class Finding(BaseModel):
    """
    One observation produced by the gap evaluator.

    `detail` is the text that lands in the completeness buckets,
    `gap` the text listed under the category, `recommendation` the
    matching fix.
    """
    model_config = ConfigDict(frozen=True)

    kind: FindingKind
    rule_name: str
    category: GapCategory
    detail: str
    gap: str
    recommendation: str


class DocumentInfo(_CamelModel):
    title: str = NOT_IDENTIFIABLE
    department: str = NOT_IDENTIFIABLE
    document_type: str = NOT_IDENTIFIABLE
    year: Union[int, str] = NOT_IDENTIFIABLE
    notes: str = NOT_IDENTIFIABLE


class CompletenessAssessment(_CamelModel):
    overall_score: int
    summary: str
    missing_sections: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])
    weak_sections: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])
    unclear_sections: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])
    outdated_content: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])


class CriticalRisks(_CamelModel):
    high_impact_risks: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])
    medium_impact_risks: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])
    low_impact_risks: List[str] = Field(default_factory=lambda: [NOT_IDENTIFIABLE])


class AnalysisResult(_CamelModel):
    """Top-level output of a gap analysis run."""
    document_info: DocumentInfo = Field(default_factory=DocumentInfo)
    completeness_assessment: CompletenessAssessment
    # Keyed by GapCategory display label, all nine always present.
    gap_categories: Dict[str, List[str]]
    critical_risks: CriticalRisks = Field(default_factory=CriticalRisks)
    recommendations: Dict[str, List[str]]
    findings: List[Finding] = Field(default_factory=list, exclude=True)


# Pre-bid query models

class PreBidRow(_CamelModel):
    id: int = Field(..., gt=0)
    vendor_question: str = Field(..., min_length=1)
    suggested_government_answer: str = Field(..., min_length=1)
    addendum: str = Field(..., min_length=1)


class PreBidSection(_CamelModel):
    section_title: str = Field(..., min_length=1)
    rows: List[PreBidRow] = Field(default_factory=list)


class PreBidResult(_CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    sections: List[PreBidSection] = Field(default_factory=list)
