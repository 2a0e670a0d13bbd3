"""
Contract Analysis database model
Stores one analysis record per uploaded contract
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContractAnalysis(Base):
    """
    Model for storing contract analysis results.

    contract_text is written once at creation; feedback is the only field
    updated afterwards.
    """
    __tablename__ = "contract_analyses"

    # Primary key
    id = Column(String(36), primary_key=True)  # UUID

    # Ownership
    owner_id = Column(String(255), nullable=False)
    project_id = Column(String(255), nullable=True)
    tier = Column(String(16), nullable=False)

    # Source
    contract_text = Column(Text, nullable=False)
    contract_type = Column(String(255), nullable=False)
    language = Column(String(16), nullable=False)

    # Analysis
    risks = Column(JSONType, nullable=False)
    opportunities = Column(JSONType, nullable=False)
    summary = Column(Text, nullable=False, default="")
    overall_score = Column(Integer, nullable=False, default=0)
    recommendations = Column(JSONType, nullable=False)
    key_clauses = Column(JSONType, nullable=False)
    legal_compliance = Column(Text, nullable=False, default="")
    negotiation_points = Column(JSONType, nullable=False)
    contract_duration = Column(Text, nullable=False, default="")
    termination_conditions = Column(Text, nullable=False, default="")
    financial_terms = Column(JSONType, nullable=False)
    performance_metrics = Column(JSONType, nullable=False)
    specific_clauses = Column(Text, nullable=False, default="")
    expiration_date = Column(DateTime(timezone=True), nullable=True)
    degraded = Column(Boolean, nullable=False, default=False)

    # Owner feedback {rating, comments}
    feedback = Column(JSONType, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Indexes
    __table_args__ = (
        Index('idx_contract_analyses_owner_created', 'owner_id', 'created_at'),
        Index('idx_contract_analyses_project_id', 'project_id'),
    )

    def __repr__(self):
        return f"<ContractAnalysis(id='{self.id}', owner_id='{self.owner_id}', type='{self.contract_type}')>"
