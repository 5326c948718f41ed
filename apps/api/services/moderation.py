"""
Report lifecycle: review, resolve, dismiss, escalate, and the auto-hide check
run after every accepted report.

States::

    pending -> under_review -> {resolved, dismissed, escalated}
    pending -> {resolved, dismissed}

Intake may also create a report directly in ``escalated`` (auto-moderation).

Terminal reports reject every further transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.report import (
    NOTES_MAX_LENGTH,
    OPEN_STATUSES,
    ModerationAction,
    Report,
    ReportStatus,
)
from models.share_link import ShareLink
from services.errors import InvalidTransition, NotFound, SharingError, ValidationFailed
from services.share_store import deactivate_share_link, set_share_hidden

logger = logging.getLogger(__name__)


AUTO_HIDE_REASON = "Exceeded report threshold"
SUPPRESSION_ACTIONS = {
    ModerationAction.CONTENT_HIDDEN.value,
    ModerationAction.CONTENT_REMOVED.value,
    ModerationAction.USER_BANNED.value,
}


@dataclass(frozen=True)
class AutoHideResult:
    """Outcome of the post-intake threshold check. ``hidden`` is True only for the call that hid the link."""

    hidden: bool
    reason: Optional[str] = None
    report_count: Optional[int] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _threshold() -> int:
    return max(int(settings.REPORT_THRESHOLD_FOR_HIDE), 1)


async def after_report_created(
    db: AsyncSession,
    report: Report,
    now: Optional[datetime] = None,
) -> AutoHideResult:
    """
    Count an accepted report against its share and hide the share once the
    threshold is reached.

    Both steps are single conditional statements, so concurrent reports at the
    threshold boundary hide the link exactly once.
    """
    if not report.share_url or report.status == ReportStatus.DISMISSED.value:
        return AutoHideResult(hidden=False)

    now = now or _now()
    share_url = report.share_url
    increment = await db.execute(
        update(ShareLink)
        .where(ShareLink.share_url == share_url)
        .values(report_count=ShareLink.report_count + 1)
        .execution_options(synchronize_session=False)
    )
    if not increment.rowcount:
        await db.commit()
        logger.warning("Report %s references missing share %s", report.id, share_url)
        return AutoHideResult(hidden=False)

    hide = await db.execute(
        update(ShareLink)
        .where(
            ShareLink.share_url == share_url,
            ShareLink.is_hidden.is_(False),
            ShareLink.report_count >= _threshold(),
        )
        .values(is_hidden=True, hidden_at=now, hidden_reason=AUTO_HIDE_REASON)
        .execution_options(synchronize_session=False)
    )
    count_result = await db.execute(select(ShareLink.report_count).where(ShareLink.share_url == share_url))
    report_count = int(count_result.scalar() or 0)
    await db.commit()

    if hide.rowcount:
        logger.warning("Share %s auto-hidden after %d reports", share_url, report_count)
        return AutoHideResult(hidden=True, reason=AUTO_HIDE_REASON, report_count=report_count)
    return AutoHideResult(hidden=False, report_count=report_count)


async def load_report(db: AsyncSession, report_id: str) -> Report:
    result = await db.execute(
        select(Report).where(Report.id == report_id).execution_options(populate_existing=True)
    )
    report = result.scalar_one_or_none()
    if not report:
        raise NotFound("Report not found.")
    return report


def _parse_action(action) -> ModerationAction:
    try:
        return ModerationAction(str(getattr(action, "value", action)))
    except ValueError as exc:
        raise ValidationFailed(f"Unknown moderation action: {action}.", field="action") from exc


def _check_notes(notes: Optional[str], field: str = "notes") -> None:
    if notes is not None and len(notes) > NOTES_MAX_LENGTH:
        raise ValidationFailed(f"{field} must be at most {NOTES_MAX_LENGTH} characters.", field=field)


async def _transition(
    db: AsyncSession,
    report: Report,
    allowed: Iterable[str],
    target: ReportStatus,
    values: Dict[str, Any],
) -> Report:
    """Compare-and-set on status so two moderators cannot both act on one report."""
    allowed = tuple(allowed)
    if report.status not in allowed:
        raise InvalidTransition(report.status, target.value)

    result = await db.execute(
        update(Report)
        .where(Report.id == report.id, Report.status.in_(allowed))
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        await db.rollback()
        await db.refresh(report)
        raise InvalidTransition(report.status, target.value)

    await db.commit()
    await db.refresh(report)
    logger.info("Report %s moved to %s", report.id, target.value)
    return report


async def review_report(
    db: AsyncSession,
    report_id: str,
    reviewer_id: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Report:
    _check_notes(notes)
    report = await load_report(db, report_id)
    return await _transition(
        db,
        report,
        (ReportStatus.PENDING.value,),
        ReportStatus.UNDER_REVIEW,
        {"reviewed_by": reviewer_id, "reviewed_at": now or _now(), "moderator_notes": notes},
    )


async def _suppress_content(db: AsyncSession, report: Report, action: str, reason: Optional[str]) -> None:
    if report.share_url:
        share_urls = [report.share_url]
    else:
        # Scenario-level suppression covers every public link of that scenario.
        result = await db.execute(select(ShareLink.share_url).where(ShareLink.scenario_id == report.scenario_id))
        share_urls = list(result.scalars().all())

    hidden_reason = reason if reason and reason != AUTO_HIDE_REASON else f"Moderation action: {action}"
    for share_url in share_urls:
        # Restamp threshold hides too, so a later dismissal cannot lift this one.
        await set_share_hidden(db, share_url, True, hidden_reason, override=True)
        if action == ModerationAction.CONTENT_REMOVED.value:
            await deactivate_share_link(db, share_url)


async def resolve_report(
    db: AsyncSession,
    report_id: str,
    action,
    reason: Optional[str] = None,
    resolution: Optional[str] = None,
    reviewer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Report:
    action = _parse_action(action)
    _check_notes(resolution, "resolution")
    now = now or _now()
    report = await load_report(db, report_id)

    values: Dict[str, Any] = {
        "action_taken": action.value,
        "action_reason": reason,
        "resolution": resolution,
        "resolved_at": now,
    }
    if reviewer_id and not report.reviewed_by:
        values.update(reviewed_by=reviewer_id, reviewed_at=now)
    report = await _transition(db, report, OPEN_STATUSES, ReportStatus.RESOLVED, values)

    if action.value in SUPPRESSION_ACTIONS:
        await _suppress_content(db, report, action.value, reason)
    elif action == ModerationAction.ESCALATED_TO_ADMIN:
        logger.warning("Report %s resolved with admin escalation: %s", report.id, reason)
    return report


async def dismiss_report(
    db: AsyncSession,
    report_id: str,
    reason: Optional[str] = None,
    reviewer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Report:
    """Dismiss a report and take it back out of its share's auto-hide tally."""
    _check_notes(reason, "reason")
    now = now or _now()
    report = await load_report(db, report_id)

    values: Dict[str, Any] = {"action_reason": reason, "resolution": reason, "resolved_at": now}
    if reviewer_id and not report.reviewed_by:
        values.update(reviewed_by=reviewer_id, reviewed_at=now)
    report = await _transition(db, report, OPEN_STATUSES, ReportStatus.DISMISSED, values)

    if report.share_url:
        await db.execute(
            update(ShareLink)
            .where(ShareLink.share_url == report.share_url, ShareLink.report_count > 0)
            .values(report_count=ShareLink.report_count - 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        state = await db.execute(
            select(ShareLink.is_hidden, ShareLink.hidden_reason).where(ShareLink.share_url == report.share_url)
        )
        row = state.first()
        # Only a threshold hide is lifted; moderator hides stay.
        if row and row.is_hidden and row.hidden_reason == AUTO_HIDE_REASON:
            await set_share_hidden(db, report.share_url, False)
    return report


async def escalate_report(
    db: AsyncSession,
    report_id: str,
    reason: Optional[str] = None,
    reviewer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Report:
    """Hand a report under review to admins. Pending reports must be reviewed first."""
    _check_notes(reason, "reason")
    now = now or _now()
    report = await load_report(db, report_id)

    values: Dict[str, Any] = {"action_reason": reason}
    if reviewer_id and not report.reviewed_by:
        values.update(reviewed_by=reviewer_id, reviewed_at=now)
    report = await _transition(db, report, (ReportStatus.UNDER_REVIEW.value,), ReportStatus.ESCALATED, values)
    logger.warning("Report %s escalated by %s: %s", report.id, reviewer_id, reason)
    return report


def _unique_ids(report_ids: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for report_id in report_ids:
        report_id = str(report_id or "").strip()
        if report_id and report_id not in seen:
            seen.add(report_id)
            ordered.append(report_id)
    return ordered


def _batch_summary(done_key: str, done: List[Dict[str, Any]], errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        done_key: done,
        "errors": errors,
        "summary": {
            "total": len(done) + len(errors),
            "successful": len(done),
            "failed": len(errors),
        },
    }


async def bulk_resolve_reports(
    db: AsyncSession,
    report_ids: Iterable[str],
    action,
    reason: Optional[str] = None,
    reviewer_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Resolve each report independently; one failure never aborts the rest."""
    action = _parse_action(action)
    resolved: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for report_id in _unique_ids(report_ids):
        try:
            report = await resolve_report(db, report_id, action, reason=reason, reviewer_id=reviewer_id)
        except SharingError as exc:
            errors.append({"reportId": report_id, "code": exc.code, "error": exc.message})
            continue
        resolved.append({"reportId": report.id, "status": report.status, "actionTaken": report.action_taken})

    logger.info("Bulk resolve by %s: %d ok, %d failed", reviewer_id, len(resolved), len(errors))
    return _batch_summary("resolved", resolved, errors)


async def bulk_dismiss_reports(
    db: AsyncSession,
    report_ids: Iterable[str],
    reason: Optional[str] = None,
    reviewer_id: Optional[str] = None,
) -> Dict[str, Any]:
    dismissed: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for report_id in _unique_ids(report_ids):
        try:
            report = await dismiss_report(db, report_id, reason=reason, reviewer_id=reviewer_id)
        except SharingError as exc:
            errors.append({"reportId": report_id, "code": exc.code, "error": exc.message})
            continue
        dismissed.append({"reportId": report.id, "status": report.status})

    logger.info("Bulk dismiss by %s: %d ok, %d failed", reviewer_id, len(dismissed), len(errors))
    return _batch_summary("dismissed", dismissed, errors)
