"""Pydantic models for insight extraction and project matching."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


class InsightType(str, Enum):
    RISK = "risk"
    OPPORTUNITY = "opportunity"
    DECISION = "decision"
    ACTION_ITEM = "action_item"
    TECHNICAL = "technical"
    STRATEGIC = "strategic"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# =============================================================================
# MATCHER INPUTS / OUTPUT
# =============================================================================

class MeetingContext(BaseModel):
    """Meeting fields the matcher and prompt builder read."""
    id: str
    title: Optional[str] = None
    date: Optional[datetime] = None
    participants: List[str] = Field(default_factory=list)
    project_id: Optional[int] = None
    duration_minutes: Optional[int] = None
    category: Optional[str] = None

    @field_validator("participants", mode="before")
    @classmethod
    def coerce_participants(cls, v):
        # Ingestion occasionally stores NULL instead of an empty list
        return v or []


class ProjectCandidate(BaseModel):
    id: int
    name: Optional[str] = None
    job_number: Optional[str] = None
    address: Optional[str] = None
    client_name: Optional[str] = None


class ProjectMatch(BaseModel):
    """Best project for a meeting; ``project_id`` is None when unassigned."""
    project_id: Optional[int] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_on: List[str] = Field(default_factory=list)


# =============================================================================
# LLM OUTPUT CONTRACTS
# =============================================================================

class ExtractedInsight(BaseModel):
    """One entry of the ``insights`` array returned by the LLM."""
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    insight_type: InsightType
    severity: Severity
    confidence_score: float = 0.5

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("insight_type", "severity", mode="before")
    @classmethod
    def lower_enum(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        if v is None:
            return 0.5
        return min(max(float(v), 0.0), 1.0)


class PatternResult(BaseModel):
    """LLM verdict for the cross-meeting pattern pass."""
    has_pattern: bool = False
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[Severity] = None

    @field_validator("severity", mode="before")
    @classmethod
    def tolerate_unknown_severity(cls, v):
        if isinstance(v, str) and v.strip().lower() in {s.value for s in Severity}:
            return v.strip().lower()
        return None


# =============================================================================
# JOB RESULTS
# =============================================================================

class MeetingInsightResult(BaseModel):
    meeting_id: str
    project_id: Optional[int] = None
    insights: List[ExtractedInsight] = Field(default_factory=list)


class ProcessingSummary(BaseModel):
    processed_meetings: int = 0
    total_insights: int = 0
    patterns_created: int = 0
    details: List[MeetingInsightResult] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {"success": True, **self.model_dump(mode="json")}
