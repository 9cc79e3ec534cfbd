"""Insight extraction over recent meetings.

Per meeting: fetch transcript chunks, skip when there are none or when
insights already exist for the meeting, match a project, ask the LLM for
structured insights, drop malformed entries and persist the rest. After a
run that processed at least one meeting, a cross-meeting pass looks for
recurring patterns per project.

Meetings are processed sequentially; batches are separated by a short pause
to stay under the LLM provider's rate limits.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from core.config import Settings
from core.database import Database
from core.logging import get_logger
from models.database import AIInsight, Meeting, MeetingChunk
from models.insights import (
    ExtractedInsight,
    InsightType,
    MeetingContext,
    MeetingInsightResult,
    PatternResult,
    ProcessingSummary,
    ProjectCandidate,
    ProjectMatch,
    Severity,
)
from services.llm import InsightLLM
from services.project_matcher import match_project

logger = get_logger(__name__)

MAX_TRANSCRIPT_CHARS = 12000
TRUNCATION_MARKER = "\n...[transcript truncated]"
CANDIDATE_PROJECT_LIMIT = 100

PATTERN_PREFIX = "[PATTERN]"
PATTERN_LOOKBACK = timedelta(days=7)
PATTERN_MIN_RECENT_INSIGHTS = 5
PATTERN_MIN_PROJECT_INSIGHTS = 3
PATTERN_CONFIDENCE = 0.85

INSIGHT_SYSTEM_PROMPT = """You are an expert project analyst extracting actionable insights from meeting transcripts.

Focus on identifying:
1. RISKS: Issues that could delay, block, or increase costs
2. OPPORTUNITIES: Chances for improvement, optimization, or growth
3. DECISIONS: Important choices that were made or need to be made
4. ACTION_ITEMS: Specific tasks that need to be completed with clear owners
5. TECHNICAL: Architecture decisions, technical debt, implementation challenges
6. STRATEGIC: Business pivots, market changes, competitive positioning

Each insight should be specific and actionable, explain why it matters,
reference specific discussion when relevant and carry a severity that
reflects its potential impact.

Return a JSON object with structure:
{
  "insights": [
    {
      "title": "Brief, clear title (max 100 chars)",
      "description": "Detailed description with context, implications, and recommendations (200-500 chars)",
      "insight_type": "risk|opportunity|decision|action_item|technical|strategic",
      "severity": "low|medium|high|critical",
      "confidence_score": 0.0-1.0
    }
  ]
}

Severity guidelines:
- critical: Immediate action needed, major impact on project success
- high: Significant impact, needs attention soon
- medium: Important but not urgent, standard priority
- low: Minor issue or nice-to-have improvement"""

PATTERN_SYSTEM_PROMPT = """Analyze multiple project insights to identify meta-patterns and trends.

Look for:
1. Recurring themes or problems appearing across meetings
2. Escalating issues that are getting worse over time
3. Interconnected problems that share root causes
4. Strategic patterns indicating project trajectory

Only return an insight if there's a significant pattern worth highlighting.
The pattern should be actionable and more valuable than individual insights.

Return JSON: {
  "has_pattern": true/false,
  "title": "Pattern title",
  "description": "Detailed pattern description with evidence and recommendations",
  "severity": "medium|high|critical"
}"""

Matcher = Callable[[MeetingContext, str, Sequence[ProjectCandidate]], ProjectMatch]


def build_transcript(chunks: Sequence[MeetingChunk]) -> str:
    """Join chunks as ``<speaker>: <content>`` lines."""
    lines = []
    for chunk in chunks:
        speaker = "Speaker"
        if isinstance(chunk.speaker_info, dict) and chunk.speaker_info.get("name"):
            speaker = chunk.speaker_info["name"]
        lines.append(f"{speaker}: {chunk.content}")
    return "\n".join(lines)


def truncate_transcript(transcript: str, max_chars: int = MAX_TRANSCRIPT_CHARS) -> str:
    if len(transcript) > max_chars:
        return transcript[:max_chars] + TRUNCATION_MARKER
    return transcript


def parse_insights(payload: Optional[Dict[str, Any]]) -> List[ExtractedInsight]:
    """Keep only well-formed entries of the ``insights`` array."""
    if not payload:
        return []
    raw_items = payload.get("insights") or []
    if not isinstance(raw_items, list):
        return []

    insights = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        try:
            insights.append(ExtractedInsight.model_validate(item))
        except ValidationError as e:
            logger.debug("Dropping malformed insight", error=str(e), title=item.get("title"))
    return insights


def to_meeting_context(meeting: Meeting) -> MeetingContext:
    return MeetingContext(
        id=meeting.id,
        title=meeting.title,
        date=meeting.date,
        participants=meeting.participants,
        project_id=meeting.project_id,
        duration_minutes=meeting.duration_minutes,
        category=meeting.category,
    )


class InsightService:
    """Runs the extraction job against the relational store and the LLM."""

    def __init__(self, database: Database, llm: InsightLLM, settings: Settings,
                 matcher: Matcher = match_project):
        self.database = database
        self.llm = llm
        self.settings = settings
        self.matcher = matcher

    async def process_recent_meetings(self, limit: Optional[int] = None) -> ProcessingSummary:
        limit = limit or self.settings.insights_default_limit
        meetings = await self.database.get_recent_meetings(limit)
        summary = ProcessingSummary()

        batch_size = self.settings.insights_batch_size
        for batch_start in range(0, len(meetings), batch_size):
            if batch_start > 0 and self.settings.insights_batch_pause_seconds > 0:
                await asyncio.sleep(self.settings.insights_batch_pause_seconds)

            for meeting in meetings[batch_start:batch_start + batch_size]:
                result = await self.process_meeting(meeting)
                if result is None:
                    continue
                summary.details.append(result)
                summary.processed_meetings += 1
                summary.total_insights += len(result.insights)

        if summary.processed_meetings > 0:
            summary.patterns_created = await self.generate_cross_meeting_patterns()

        logger.info("Insight processing complete",
                    meetings_considered=len(meetings),
                    processed_meetings=summary.processed_meetings,
                    total_insights=summary.total_insights,
                    patterns_created=summary.patterns_created)
        return summary

    async def process_meeting(self, meeting: Meeting) -> Optional[MeetingInsightResult]:
        """Extract and persist insights for one meeting; None when skipped."""
        try:
            chunks = await self.database.get_meeting_chunks(meeting.id)
        except Exception as e:
            logger.error("Failed to fetch meeting chunks", meeting_id=meeting.id, error=str(e))
            return None

        if not chunks:
            logger.info("No chunks found for meeting", meeting_id=meeting.id)
            return None

        if await self.database.has_insights_for_meeting(meeting.id):
            logger.debug("Meeting already has insights", meeting_id=meeting.id)
            return None

        context = to_meeting_context(meeting)
        transcript = build_transcript(chunks)

        candidates = await self._project_candidates()
        project_match = self.matcher(context, transcript, candidates)
        logger.info("Project match for meeting",
                    meeting=meeting.title or meeting.id,
                    project_id=project_match.project_id,
                    confidence=project_match.confidence,
                    matched_on=project_match.matched_on)

        insights = await self.generate_meeting_insights(context, transcript, project_match)

        rows = [
            AIInsight(
                title=insight.title,
                description=insight.description,
                insight_type=insight.insight_type.value,
                severity=insight.severity.value,
                confidence_score=insight.confidence_score,
                meeting_id=meeting.id,
                project_id=project_match.project_id,
                source_meetings=meeting.id,
                resolved=False,
            )
            for insight in insights
        ]
        try:
            await self.database.add_insights(rows)
        except Exception as e:
            logger.error("Failed to store insights", meeting_id=meeting.id, error=str(e))
            return None

        return MeetingInsightResult(
            meeting_id=meeting.id,
            project_id=project_match.project_id,
            insights=insights,
        )

    async def generate_meeting_insights(self, meeting: MeetingContext, transcript: str,
                                        project_match: ProjectMatch) -> List[ExtractedInsight]:
        payload = await self.llm.complete_json(
            INSIGHT_SYSTEM_PROMPT,
            self._meeting_prompt(meeting, transcript),
            temperature=0.3,
            max_tokens=2000,
        )
        insights = parse_insights(payload)
        logger.debug("Insights generated", meeting_id=meeting.id, count=len(insights),
                     has_project=project_match.project_id is not None)
        return insights

    async def generate_cross_meeting_patterns(self, now: Optional[datetime] = None) -> int:
        """Create ``[PATTERN]`` insights for projects with recurring themes."""
        since = (now or datetime.now(timezone.utc)) - PATTERN_LOOKBACK
        recent = await self.database.get_insights_since(since)
        if len(recent) < PATTERN_MIN_RECENT_INSIGHTS:
            return 0

        by_project: Dict[int, List[AIInsight]] = {}
        for insight in recent:
            if insight.project_id:
                by_project.setdefault(insight.project_id, []).append(insight)

        created = 0
        for project_id, insights in by_project.items():
            if len(insights) < PATTERN_MIN_PROJECT_INSIGHTS:
                continue
            if await self.database.has_pattern_insight(project_id, since):
                continue

            try:
                pattern = await self._detect_pattern(project_id, insights)
                if not pattern or not pattern.has_pattern or not pattern.title:
                    continue

                meeting_ids = list(dict.fromkeys(i.meeting_id for i in insights if i.meeting_id))
                await self.database.add_insights([
                    AIInsight(
                        title=f"{PATTERN_PREFIX} {pattern.title}",
                        description=pattern.description or "",
                        insight_type=InsightType.STRATEGIC.value,
                        severity=(pattern.severity or Severity.HIGH).value,
                        confidence_score=PATTERN_CONFIDENCE,
                        project_id=project_id,
                        source_meetings=",".join(meeting_ids),
                        resolved=False,
                    )
                ])
                created += 1
                logger.info("Created pattern insight", project_id=project_id)
            except Exception as e:
                logger.error("Error generating pattern", project_id=project_id, error=str(e))

        return created

    async def _detect_pattern(self, project_id: int, insights: List[AIInsight]) -> Optional[PatternResult]:
        dates = await self.database.get_meeting_dates([i.meeting_id for i in insights if i.meeting_id])
        lines = []
        for insight in insights:
            date = dates.get(insight.meeting_id) if insight.meeting_id else None
            date_text = date.date().isoformat() if date else "Unknown date"
            lines.append(f"[{insight.severity}] {insight.title} ({date_text})\n   {insight.description}")

        payload = await self.llm.complete_json(
            PATTERN_SYSTEM_PROMPT,
            f"Analyze these {len(insights)} insights from project {project_id}:\n\n"
            + "\n\n".join(lines)
            + "\n\nIdentify significant patterns or trends across these insights.",
            temperature=0.4,
            max_tokens=800,
        )
        if payload is None:
            return None
        try:
            return PatternResult.model_validate(payload)
        except ValidationError as e:
            logger.warning("Malformed pattern response", project_id=project_id, error=str(e))
            return None

    async def _project_candidates(self) -> List[ProjectCandidate]:
        rows = await self.database.get_project_candidates(CANDIDATE_PROJECT_LIMIT)
        return [
            ProjectCandidate(
                id=project.id,
                name=project.name,
                job_number=project.job_number,
                address=project.address,
                client_name=client_name,
            )
            for project, client_name in rows
        ]

    @staticmethod
    def _meeting_prompt(meeting: MeetingContext, transcript: str) -> str:
        duration = f"{meeting.duration_minutes} minutes" if meeting.duration_minutes else "Unknown"
        participants = ", ".join(meeting.participants) or "Unknown"
        return (
            "Analyze this meeting and extract key project insights:\n\n"
            "Meeting Context:\n"
            f"- Title: {meeting.title or 'Untitled Meeting'}\n"
            f"- Date: {meeting.date.isoformat() if meeting.date else 'Unknown'}\n"
            f"- Duration: {duration}\n"
            f"- Participants: {participants}\n"
            f"- Category: {meeting.category or 'General'}\n\n"
            "Meeting Transcript:\n"
            f"{truncate_transcript(transcript)}\n\n"
            "Extract 3-8 key insights from this meeting. "
            "Focus on the most important and actionable items."
        )
