"""Moderation queue priority scoring."""

from __future__ import annotations

from typing import Optional

from models.report import ReportReason, ReportSeverity


SEVERITY_BASE_SCORES = {
    ReportSeverity.CRITICAL.value: 100,
    ReportSeverity.HIGH.value: 75,
    ReportSeverity.MEDIUM.value: 50,
    ReportSeverity.LOW.value: 25,
}
HIGH_PRIORITY_REASONS = {
    ReportReason.VIOLENCE.value,
    ReportReason.HATE_SPEECH.value,
    ReportReason.HARASSMENT.value,
}
HIGH_PRIORITY_REASON_BONUS = 25
AUTO_MODERATION_BONUS = 30
AUTO_MODERATION_BONUS_THRESHOLD = 0.7


def enum_value(item) -> str:
    return str(getattr(item, "value", item) or "")


def compute_priority_score(
    severity,
    reason,
    is_auto_moderated: bool = False,
    auto_moderation_score: Optional[float] = None,
) -> int:
    """Deterministic, uncapped priority computed once at intake."""
    score = SEVERITY_BASE_SCORES.get(enum_value(severity), 0)
    if enum_value(reason) in HIGH_PRIORITY_REASONS:
        score += HIGH_PRIORITY_REASON_BONUS
    if is_auto_moderated and auto_moderation_score is not None and auto_moderation_score > AUTO_MODERATION_BONUS_THRESHOLD:
        score += AUTO_MODERATION_BONUS
    return score
