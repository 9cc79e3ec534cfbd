"""Associate a meeting with the most likely project.

Scoring is a keyword overlap between lower-cased "indicator" strings taken
from the meeting (title, participant emails and their company label,
phrases lifted from the start of the transcript) and each candidate's
name, job number, address tokens and client name. Candidates are scored
independently; the best one is kept only above ``MATCH_THRESHOLD``.

Pure function of its inputs: no I/O, no caching.
"""

import re
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from models.insights import MeetingContext, ProjectCandidate, ProjectMatch

ASSIGNED_CONFIDENCE = 0.95
MATCH_THRESHOLD = 0.3
TRANSCRIPT_SAMPLE_CHARS = 5000
MIN_PHRASE_LENGTH = 3
MIN_ADDRESS_TOKEN_LENGTH = 4

NAME_WEIGHT = 0.4
JOB_NUMBER_WEIGHT = 0.6
ADDRESS_TOKEN_WEIGHT = 0.2
CLIENT_WEIGHT = 0.3

PROJECT_PATTERNS = [
    re.compile(r"""project\s+["']?([^"'\n]+?)["']?\s""", re.IGNORECASE),
    re.compile(r"job\s+(?:number|#)\s*:?\s*([A-Z0-9\-]+)", re.IGNORECASE),
    re.compile(r"""client\s+["']?([^"'\n]+?)["']?\s""", re.IGNORECASE),
    re.compile(r"""working\s+on\s+["']?([^"'\n]+?)["']?\s""", re.IGNORECASE),
    re.compile(r"""regarding\s+["']?([^"'\n]+?)["']?\s+project""", re.IGNORECASE),
    re.compile(r"(\d{3,6})\s+(?:project|job)", re.IGNORECASE),
]

ADDRESS_SPLIT = re.compile(r"[\s,]+")


def extract_indicators(meeting: MeetingContext, transcript: str) -> Set[str]:
    """Collect normalized indicator strings for a meeting."""
    indicators: Set[str] = set()

    def add(value: Optional[str]) -> None:
        value = (value or "").strip().lower()
        if value:
            indicators.add(value)

    add(meeting.title)

    for email in meeting.participants:
        if not isinstance(email, str):
            continue
        add(email)
        # alice@acme.com -> "acme"
        _, _, domain = email.partition("@")
        add(domain.split(".")[0])

    sample = (transcript or "")[:TRANSCRIPT_SAMPLE_CHARS]
    for pattern in PROJECT_PATTERNS:
        for match in pattern.finditer(sample):
            phrase = match.group(1)
            if phrase and len(phrase) >= MIN_PHRASE_LENGTH:
                add(phrase)

    return indicators


def _overlaps(indicators: Iterable[str], value: str) -> bool:
    return any(value in indicator or indicator in value for indicator in indicators)


def score_candidate(project: ProjectCandidate, indicators: Set[str]) -> Tuple[float, List[str]]:
    """Score one candidate; returns (clamped score, evidence)."""
    score = 0.0
    matched_on: List[str] = []

    if project.name:
        name = project.name.lower()
        if _overlaps(indicators, name):
            score += NAME_WEIGHT
            matched_on.append(f"name: {project.name}")

    if project.job_number:
        job_number = project.job_number.lower()
        if any(indicator == job_number or job_number in indicator for indicator in indicators):
            score += JOB_NUMBER_WEIGHT
            matched_on.append(f"job#: {project.job_number}")

    if project.address:
        for part in ADDRESS_SPLIT.split(project.address.lower()):
            if len(part) >= MIN_ADDRESS_TOKEN_LENGTH and any(part in indicator for indicator in indicators):
                score += ADDRESS_TOKEN_WEIGHT
                matched_on.append(f"address: {part}")

    if project.client_name:
        client_name = project.client_name.lower()
        if _overlaps(indicators, client_name):
            score += CLIENT_WEIGHT
            matched_on.append(f"client: {project.client_name}")

    return round(min(score, 1.0), 4), matched_on


def match_project(meeting: MeetingContext, transcript: str,
                  candidates: Sequence[ProjectCandidate]) -> ProjectMatch:
    """Return the best project for a meeting, or an unassigned match."""
    if meeting.project_id:
        return ProjectMatch(project_id=meeting.project_id, confidence=ASSIGNED_CONFIDENCE)

    indicators = extract_indicators(meeting, transcript)

    best_id: Optional[int] = None
    best_score = 0.0
    best_evidence: List[str] = []
    for project in candidates:
        score, evidence = score_candidate(project, indicators)
        # strict > keeps the earliest candidate on ties
        if score > best_score:
            best_id, best_score, best_evidence = project.id, score, evidence

    if best_score > MATCH_THRESHOLD:
        return ProjectMatch(project_id=best_id, confidence=best_score, matched_on=best_evidence)
    return ProjectMatch(project_id=None, confidence=best_score, matched_on=best_evidence)
