"""Heuristic pre-screening of incoming reports."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from models.report import ReportSeverity
from services.priority import HIGH_PRIORITY_REASONS, enum_value


URL_PATTERN = re.compile(r"https?://", re.IGNORECASE)
REPEATED_CHAR_PATTERN = re.compile(r"(.)\1{4,}")

URL_WEIGHT = 0.3
REPEATED_CHAR_WEIGHT = 0.4
HIGH_PRIORITY_REASON_WEIGHT = 0.6
CRITICAL_SEVERITY_WEIGHT = 0.5


@dataclass(frozen=True)
class AutoModerationResult:
    score: float
    escalate: bool


def score_report(reason, severity, description: Optional[str]) -> float:
    """Score in [0, 1]; higher means more likely to need urgent attention."""
    content = description or ""
    score = 0.0
    if URL_PATTERN.search(content):
        score += URL_WEIGHT
    if REPEATED_CHAR_PATTERN.search(content):
        score += REPEATED_CHAR_WEIGHT
    if enum_value(reason) in HIGH_PRIORITY_REASONS:
        score += HIGH_PRIORITY_REASON_WEIGHT
    if enum_value(severity) == ReportSeverity.CRITICAL.value:
        score += CRITICAL_SEVERITY_WEIGHT
    return round(min(score, 1.0), 4)


def auto_moderate(reason, severity, description: Optional[str], escalate_at: float) -> AutoModerationResult:
    score = score_report(reason, severity, description)
    return AutoModerationResult(score=score, escalate=score >= escalate_at)
