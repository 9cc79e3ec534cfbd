"""SQLModel tables for meetings, projects and extracted insights."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func


class Client(SQLModel, table=True):
    """Client organisation that owns projects."""

    __tablename__ = "clients"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    company_id: Optional[int] = Field(default=None)


class Project(SQLModel, table=True):
    """Project record used as a match candidate for meetings."""

    __tablename__ = "projects"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    job_number: Optional[str] = Field(default=None, max_length=64, index=True)
    address: Optional[str] = Field(default=None, max_length=500)
    client_id: Optional[int] = Field(default=None, foreign_key="clients.id")
    description: Optional[str] = Field(default=None, max_length=2000)
    status: str = Field(default="active", max_length=50)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class Meeting(SQLModel, table=True):
    """Meeting metadata written by the ingestion pipeline (read-only here)."""

    __tablename__ = "meetings"

    id: str = Field(primary_key=True, max_length=255)
    title: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), index=True)
    )
    participants: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id")
    summary: Optional[str] = Field(default=None)
    duration_minutes: Optional[int] = Field(default=None)
    category: Optional[str] = Field(default=None, max_length=100)


class MeetingChunk(SQLModel, table=True):
    """Ordered transcript chunk of a meeting."""

    __tablename__ = "meeting_chunks"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: str = Field(foreign_key="meetings.id", index=True, max_length=255)
    chunk_index: int = Field(default=0)
    content: str
    chunk_type: Optional[str] = Field(default=None, max_length=50)
    speaker_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    start_timestamp: Optional[float] = Field(default=None)
    end_timestamp: Optional[float] = Field(default=None)


class AIInsight(SQLModel, table=True):
    """Insight extracted from one meeting, or a cross-meeting pattern."""

    __tablename__ = "ai_insights"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=500)
    description: str = Field(max_length=5000)
    insight_type: str = Field(max_length=50, index=True)
    severity: str = Field(max_length=20)
    confidence_score: float = Field(default=0.5)
    meeting_id: Optional[str] = Field(default=None, foreign_key="meetings.id", index=True, max_length=255)
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id", index=True)
    source_meetings: Optional[str] = Field(default=None, max_length=5000)
    resolved: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), index=True)
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "insight_type": self.insight_type,
            "severity": self.severity,
            "confidence_score": self.confidence_score,
            "meeting_id": self.meeting_id,
            "project_id": self.project_id,
            "source_meetings": self.source_meetings,
            "resolved": self.resolved,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
