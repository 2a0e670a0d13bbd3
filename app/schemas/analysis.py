"""
Contract analysis Pydantic schemas
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Tier(str, Enum):
    """Entitlement tier; drives prompt selection and the expected response schema"""
    FREE = "free"
    PREMIUM = "premium"


class Level(str, Enum):
    """Severity / impact level (premium only)"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CamelModel(BaseModel):
    """Base model using camelCase on the wire and snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Risk(CamelModel):
    """A single risk found in the contract"""
    description: str = Field(..., description="Short risk description")
    explanation: str = Field(..., description="Why this is a risk")
    severity: Optional[Level] = Field(None, description="Severity level (premium only)")


class Opportunity(CamelModel):
    """A single opportunity or benefit found in the contract"""
    description: str = Field(..., description="Short opportunity description")
    explanation: str = Field(..., description="Why this is an opportunity")
    impact: Optional[Level] = Field(None, description="Impact level (premium only)")


class FinancialTerms(CamelModel):
    """Compensation or other financial terms of the contract"""
    description: str = ""
    details: List[str] = Field(default_factory=list)


class Feedback(CamelModel):
    """Owner feedback on an analysis"""
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comments: Optional[str] = Field(None, max_length=2000)


class AnalysisPayload(CamelModel):
    """
    Structured analysis produced by the response parser.

    Premium-only fields stay at their empty baseline for free-tier payloads.
    """
    risks: List[Risk] = Field(default_factory=list)
    opportunities: List[Opportunity] = Field(default_factory=list)
    summary: str = ""
    overall_score: int = Field(0, ge=0, le=100, description="0 means no score could be recovered")
    recommendations: List[str] = Field(default_factory=list)
    key_clauses: List[str] = Field(default_factory=list)
    legal_compliance: str = ""
    negotiation_points: List[str] = Field(default_factory=list)
    contract_duration: str = ""
    termination_conditions: str = ""
    financial_terms: FinancialTerms = Field(default_factory=FinancialTerms)
    performance_metrics: List[str] = Field(default_factory=list)
    specific_clauses: str = ""


class AnalysisRecord(AnalysisPayload):
    """Durable analysis record"""
    id: str
    owner_id: str
    project_id: Optional[str] = None
    tier: Tier
    contract_text: str
    contract_type: str
    language: str
    expiration_date: Optional[datetime] = None
    feedback: Optional[Feedback] = None
    degraded: bool = False
    created_at: datetime


class AnalysisRequest(CamelModel):
    """Transient request for one analysis run"""
    owner_id: str = ""
    project_id: Optional[str] = None
    document_text: str = ""
    tier: Tier = Tier.FREE
    contract_type: str = ""
    language_hint: Optional[str] = None
    client_id: Optional[str] = Field(None, description="Rate-limit identity (defaults to owner_id)")


class AskRequest(CamelModel):
    """Follow-up question about a stored analysis"""
    question: str = Field(..., description="Free-text question")


class AskResponse(CamelModel):
    """Answer to a follow-up question"""
    answer: str
    is_contract_related: bool
    requires_legal_advice: bool
    suggestions: List[str] = Field(default_factory=list)


class DetectTypeResponse(CamelModel):
    """Detected contract type"""
    detected_type: str
