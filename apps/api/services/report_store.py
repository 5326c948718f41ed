"""Report intake with duplicate suppression, plus moderator-facing report reads."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.report import (
    DESCRIPTION_MAX_LENGTH,
    OPEN_STATUSES,
    ModerationAction,
    Report,
    ReportCategory,
    ReportReason,
    ReportSeverity,
    ReportStatus,
    TargetType,
)
from models.scenario import Scenario
from services.access_policy import as_utc
from services.auto_moderation import auto_moderate
from services.errors import DuplicateReport, NotFound, ValidationFailed
from services.moderation import AutoHideResult, after_report_created, load_report
from services.priority import compute_priority_score
from services.share_store import get_share_link

logger = logging.getLogger(__name__)


@dataclass
class ReportIntake:
    report: Report
    auto_hide: AutoHideResult


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_enum(enum_cls, value, field: str, default=None):
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationFailed(f"{field} is required.", field=field)
    try:
        return enum_cls(str(getattr(value, "value", value)))
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise ValidationFailed(f"{field} must be one of: {allowed}.", field=field) from exc


async def find_open_report(
    db: AsyncSession,
    target_type: str,
    target_id: str,
    reporter_identity: str,
) -> Optional[Report]:
    result = await db.execute(
        select(Report)
        .where(
            Report.target_type == target_type,
            Report.target_id == target_id,
            Report.reporter_identity == reporter_identity,
            Report.status.in_(OPEN_STATUSES),
        )
        .order_by(Report.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_report(
    db: AsyncSession,
    *,
    target_type,
    target_id: str,
    reason,
    reporter_ip: Optional[str],
    reporter_id: Optional[str] = None,
    scenario_id: Optional[str] = None,
    share_url: Optional[str] = None,
    description: Optional[str] = None,
    category=None,
    severity=None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReportIntake:
    """
    Accept a report, or raise DuplicateReport when the same identity already
    has an open report on the target.

    The open-report unique index is the real guard; the read check only
    avoids a failed insert in the common case.
    """
    now = now or _now()
    target = _parse_enum(TargetType, target_type, "targetType")
    reason = _parse_enum(ReportReason, reason, "reason")
    category = _parse_enum(ReportCategory, category, "category", default=ReportCategory.CONTENT)
    severity = _parse_enum(ReportSeverity, severity, "severity", default=ReportSeverity.MEDIUM)
    target_id = str(target_id or "").strip()
    if not target_id:
        raise ValidationFailed("targetId is required.", field="targetId")
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationFailed(
            f"description must be at most {DESCRIPTION_MAX_LENGTH} characters.",
            field="description",
        )

    # target_id is the dedupe key, so it must name the same record the report counts against.
    if target == TargetType.SHARED_SCENARIO:
        if share_url and share_url != target_id:
            raise ValidationFailed("shareUrl must match targetId for shared_scenario reports.", field="shareUrl")
        link = await get_share_link(db, target_id)
        target_id = share_url = link.share_url
        scenario_id = link.scenario_id
    else:
        if scenario_id and scenario_id != target_id:
            raise ValidationFailed("scenarioId must match targetId for scenario reports.", field="scenarioId")
        scenario_result = await db.execute(select(Scenario.id).where(Scenario.id == target_id))
        scenario_id = scenario_result.scalar_one_or_none()
        if not scenario_id:
            raise NotFound("Scenario not found.")
        target_id = scenario_id
        share_url = None

    reporter_ip = str(reporter_ip or "").strip() or "unknown"
    reporter_identity = reporter_id or reporter_ip

    existing = await find_open_report(db, target.value, target_id, reporter_identity)
    if existing:
        logger.warning(
            "Duplicate report suppressed target=%s:%s identity=%s existing=%s",
            target.value,
            target_id,
            reporter_identity,
            existing.id,
        )
        raise DuplicateReport(existing.id)

    status = ReportStatus.PENDING
    is_auto_moderated = False
    auto_score = None
    if settings.AUTO_MODERATE_REPORTS:
        screening = auto_moderate(reason, severity, description, float(settings.AUTO_ESCALATE_SCORE))
        is_auto_moderated = True
        auto_score = screening.score
        if screening.escalate:
            status = ReportStatus.ESCALATED
            severity = ReportSeverity.CRITICAL
            logger.warning("Report on %s:%s auto-escalated (score=%.2f)", target.value, target_id, auto_score)

    report = Report(
        target_type=target.value,
        target_id=target_id,
        scenario_id=scenario_id,
        share_url=share_url,
        reporter_id=reporter_id,
        reporter_ip=reporter_ip,
        reporter_identity=reporter_identity,
        reporter_user_agent=(user_agent or "")[:512] or None,
        reason=reason.value,
        category=category.value,
        severity=severity.value,
        description=description,
        status=status.value,
        priority_score=compute_priority_score(severity, reason, is_auto_moderated, auto_score),
        is_auto_moderated=is_auto_moderated,
        auto_moderation_score=auto_score,
        action_taken=ModerationAction.NONE.value,
        created_at=now,
    )
    db.add(report)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        winner = await find_open_report(db, target.value, target_id, reporter_identity)
        if winner is None:
            raise
        logger.warning("Concurrent duplicate report lost the insert race; existing=%s", winner.id)
        raise DuplicateReport(winner.id)
    await db.refresh(report)

    logger.info(
        "Report created id=%s target=%s:%s reason=%s priority=%d",
        report.id,
        report.target_type,
        report.target_id,
        report.reason,
        report.priority_score,
    )
    auto_hide = await after_report_created(db, report, now=now)
    return ReportIntake(report=report, auto_hide=auto_hide)


async def get_report(db: AsyncSession, report_id: str) -> Report:
    try:
        return await load_report(db, report_id)
    except OperationalError as exc:
        logger.warning("Report read failed, retrying once: %s", exc)
        await db.rollback()
        return await load_report(db, report_id)


async def list_pending_reports(
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    severity: Optional[str] = None,
    reason: Optional[str] = None,
    category: Optional[str] = None,
) -> Dict[str, Any]:
    """Moderation queue, highest priority first and oldest first within a priority."""
    page = max(int(page), 1)
    limit = max(min(int(limit), 100), 1)
    queue_status = _parse_enum(ReportStatus, status, "status", default=ReportStatus.PENDING)
    if queue_status.value not in OPEN_STATUSES:
        raise ValidationFailed("status must be pending or under_review.", field="status")

    filters = [Report.status == queue_status.value]
    if severity:
        filters.append(Report.severity == _parse_enum(ReportSeverity, severity, "severity").value)
    if reason:
        filters.append(Report.reason == _parse_enum(ReportReason, reason, "reason").value)
    if category:
        filters.append(Report.category == _parse_enum(ReportCategory, category, "category").value)

    total = int((await db.execute(select(func.count()).select_from(Report).where(*filters))).scalar() or 0)
    result = await db.execute(
        select(Report)
        .where(*filters)
        .order_by(Report.priority_score.desc(), Report.created_at.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "reports": list(result.scalars().all()),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }


async def list_reports_by_target(db: AsyncSession, target_type: str, target_id: str) -> List[Report]:
    target = _parse_enum(TargetType, target_type, "targetType")
    result = await db.execute(
        select(Report)
        .where(
            Report.target_type == target.value,
            Report.target_id == target_id,
            Report.status != ReportStatus.DISMISSED.value,
        )
        .order_by(Report.created_at.desc())
    )
    return list(result.scalars().all())


async def get_report_stats(
    db: AsyncSession,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Dict[str, Any]:
    filters = []
    if date_from:
        filters.append(Report.created_at >= as_utc(date_from))
    if date_to:
        filters.append(Report.created_at <= as_utc(date_to))

    async def _grouped(column) -> Dict[str, int]:
        rows = await db.execute(select(column, func.count(Report.id)).where(*filters).group_by(column))
        return {str(key): int(count) for key, count in rows.all()}

    by_status = {status.value: 0 for status in ReportStatus}
    by_status.update(await _grouped(Report.status))
    return {
        "total": sum(by_status.values()),
        "byStatus": by_status,
        "byReason": await _grouped(Report.reason),
        "bySeverity": await _grouped(Report.severity),
        "autoModerated": int(
            (
                await db.execute(
                    select(func.count(Report.id)).where(*filters, Report.is_auto_moderated.is_(True))
                )
            ).scalar()
            or 0
        ),
    }


def report_options() -> Dict[str, List[str]]:
    return {
        "targetTypes": [item.value for item in TargetType],
        "reasons": [item.value for item in ReportReason],
        "categories": [item.value for item in ReportCategory],
        "severities": [item.value for item in ReportSeverity],
        "statuses": [item.value for item in ReportStatus],
        "actions": [item.value for item in ModerationAction],
    }


def serialize_report(report: Report, include_private: bool = False) -> Dict[str, Any]:
    def _iso(value: Optional[datetime]) -> Optional[str]:
        value = as_utc(value)
        return value.isoformat() if value else None

    payload = {
        "reportId": report.id,
        "targetType": report.target_type,
        "targetId": report.target_id,
        "scenarioId": report.scenario_id,
        "shareUrl": report.share_url,
        "reason": report.reason,
        "category": report.category,
        "severity": report.severity,
        "description": report.description,
        "status": report.status,
        "priorityScore": int(report.priority_score or 0),
        "isAutoModerated": bool(report.is_auto_moderated),
        "autoModerationScore": report.auto_moderation_score,
        "actionTaken": report.action_taken,
        "actionReason": report.action_reason,
        "resolution": report.resolution,
        "reviewedBy": report.reviewed_by,
        "reviewedAt": _iso(report.reviewed_at),
        "resolvedAt": _iso(report.resolved_at),
        "createdAt": _iso(report.created_at),
    }
    if include_private:
        payload.update(
            {
                "reporterId": report.reporter_id,
                "reporterIp": report.reporter_ip,
                "reporterUserAgent": report.reporter_user_agent,
                "moderatorNotes": report.moderator_notes,
            }
        )
    return payload
