"""
Router for abuse report intake and the moderation queue.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.report import DESCRIPTION_MAX_LENGTH, NOTES_MAX_LENGTH
from routers.auth_scope import AuthContext, get_optional_auth_context, require_admin, require_moderator
from routers.rate_limit import client_ip, rate_limit
from services.moderation import (
    bulk_dismiss_reports,
    bulk_resolve_reports,
    dismiss_report,
    escalate_report,
    resolve_report,
    review_report,
)
from services.report_store import (
    create_report,
    get_report,
    get_report_stats,
    list_pending_reports,
    list_reports_by_target,
    report_options,
    serialize_report,
)

router = APIRouter()
logger = logging.getLogger(__name__)

report_rate_limit = rate_limit(
    "report",
    limit=int(settings.REPORT_RATE_LIMIT),
    window_seconds=int(settings.REPORT_RATE_WINDOW_SECONDS),
)


class CreateReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_type: str = Field(alias="targetType")
    target_id: str = Field(alias="targetId", min_length=1)
    share_url: Optional[str] = Field(default=None, alias="shareUrl")
    scenario_id: Optional[str] = Field(default=None, alias="scenarioId")
    reason: str
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    category: Optional[str] = None
    severity: Optional[str] = None


class ReviewRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


class ResolveRequest(BaseModel):
    action: str
    reason: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)
    resolution: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


class BulkResolveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_ids: List[str] = Field(alias="reportIds", min_length=1, max_length=100)
    action: str
    reason: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


class BulkDismissRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_ids: List[str] = Field(alias="reportIds", min_length=1, max_length=100)
    reason: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


@router.post("/report", status_code=201, dependencies=[Depends(report_rate_limit)])
async def submit_report(
    payload: CreateReportRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Report a scenario or shared scenario. Anonymous reports are keyed by client IP."""
    try:
        intake = await create_report(
            db,
            target_type=payload.target_type,
            target_id=payload.target_id,
            share_url=payload.share_url,
            scenario_id=payload.scenario_id,
            reason=payload.reason,
            description=payload.description,
            category=payload.category,
            severity=payload.severity,
            reporter_id=auth.user_id if auth else None,
            reporter_ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        return {
            "reportId": intake.report.id,
            "status": intake.report.status,
            "priorityScore": intake.report.priority_score,
            "autoHidden": intake.auto_hide.hidden,
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to create report target=%s:%s", payload.target_type, payload.target_id)
        raise HTTPException(status_code=500, detail="Failed to submit report.")


@router.get("/options")
async def get_report_options():
    """Values for the report form dropdowns."""
    return report_options()


@router.get("/pending")
async def get_pending_reports(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    reason: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    moderator: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await list_pending_reports(
            db,
            page=page,
            limit=limit,
            status=status,
            severity=severity,
            reason=reason,
            category=category,
        )
        return {
            "reports": [serialize_report(report) for report in result["reports"]],
            "pagination": result["pagination"],
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to list pending reports for moderator=%s", moderator.user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch pending reports.")


@router.get("/stats")
async def get_stats(
    date_from: Optional[datetime] = Query(default=None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(default=None, alias="dateTo"),
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_report_stats(db, date_from, date_to)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to build report stats for admin=%s", admin.user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch report statistics.")


@router.get("/target/{target_type}/{target_id}")
async def get_target_reports(
    target_type: str,
    target_id: str,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        reports = await list_reports_by_target(db, target_type, target_id)
        return {"reports": [serialize_report(report, include_private=True) for report in reports]}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to list reports for target=%s:%s", target_type, target_id)
        raise HTTPException(status_code=500, detail="Failed to fetch target reports.")


@router.patch("/bulk/resolve")
async def bulk_resolve(
    payload: BulkResolveRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Resolve many reports; each id succeeds or fails on its own."""
    try:
        return await bulk_resolve_reports(
            db,
            payload.report_ids,
            payload.action,
            reason=payload.reason,
            reviewer_id=admin.user_id,
        )
    except HTTPException:
        raise
    except Exception:
        logger.exception("Bulk resolve failed for admin=%s", admin.user_id)
        raise HTTPException(status_code=500, detail="Failed to bulk resolve reports.")


@router.patch("/bulk/dismiss")
async def bulk_dismiss(
    payload: BulkDismissRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await bulk_dismiss_reports(db, payload.report_ids, reason=payload.reason, reviewer_id=admin.user_id)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Bulk dismiss failed for admin=%s", admin.user_id)
        raise HTTPException(status_code=500, detail="Failed to bulk dismiss reports.")


@router.get("/{report_id}")
async def get_report_detail(
    report_id: str,
    moderator: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    try:
        report = await get_report(db, report_id)
        return {"report": serialize_report(report, include_private=moderator.is_admin)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to fetch report id=%s", report_id)
        raise HTTPException(status_code=500, detail="Failed to fetch report.")


@router.patch("/{report_id}/review")
async def review(
    report_id: str,
    payload: ReviewRequest,
    moderator: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    try:
        report = await review_report(db, report_id, moderator.user_id, payload.notes)
        return {"report": serialize_report(report)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to review report id=%s", report_id)
        raise HTTPException(status_code=500, detail="Failed to review report.")


@router.patch("/{report_id}/resolve")
async def resolve(
    report_id: str,
    payload: ResolveRequest,
    moderator: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    try:
        report = await resolve_report(
            db,
            report_id,
            payload.action,
            reason=payload.reason,
            resolution=payload.resolution,
            reviewer_id=moderator.user_id,
        )
        return {"report": serialize_report(report)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to resolve report id=%s", report_id)
        raise HTTPException(status_code=500, detail="Failed to resolve report.")


@router.patch("/{report_id}/dismiss")
async def dismiss(
    report_id: str,
    payload: ReasonRequest,
    moderator: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    try:
        report = await dismiss_report(db, report_id, reason=payload.reason, reviewer_id=moderator.user_id)
        return {"report": serialize_report(report)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to dismiss report id=%s", report_id)
        raise HTTPException(status_code=500, detail="Failed to dismiss report.")


@router.patch("/{report_id}/escalate")
async def escalate(
    report_id: str,
    payload: ReasonRequest,
    moderator: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    try:
        report = await escalate_report(db, report_id, reason=payload.reason, reviewer_id=moderator.user_id)
        return {"report": serialize_report(report)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to escalate report id=%s", report_id)
        raise HTTPException(status_code=500, detail="Failed to escalate report.")
