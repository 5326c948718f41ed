"""
Router for creating, viewing and managing public scenario share links.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.share_link import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH
from routers.auth_scope import AuthContext, get_auth_context
from services.access_policy import as_utc
from services.analytics import detect_device, get_share_counters, record_share, record_view
from services.errors import AccessDenied
from services.share_store import (
    build_share_urls,
    create_share_link,
    ensure_accessible,
    fetch_accessible_share,
    get_owner_share_analytics,
    get_share_link,
    get_social_metadata,
    list_owner_shares,
    render_share_qr_png,
    revoke_share_link,
    serialize_owner_share,
    serialize_public_share,
    update_share_link,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateShareRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    password: Optional[str] = Field(default=None, min_length=1, max_length=128)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    preview_image: Optional[str] = Field(default=None, alias="previewImage")
    force_new: bool = Field(default=False, alias="forceNew")


class UpdateShareRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    password: Optional[str] = Field(default=None, max_length=128)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    preview_image: Optional[str] = Field(default=None, alias="previewImage")
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class RecordShareRequest(BaseModel):
    platform: str = Field(default="other", max_length=64)


def _creation_payload(link) -> dict:
    expires_at = as_utc(link.expires_at)
    return {
        "shareUrl": link.share_url,
        "shortUrl": link.short_url,
        "expiresAt": expires_at.isoformat() if expires_at else None,
        "isPasswordProtected": link.is_password_protected,
        **build_share_urls(link),
    }


@router.get("/my")
async def list_my_shares(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort: str = Query(default="created_at"),
    order: Literal["asc", "desc"] = Query(default="desc"),
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's share links."""
    try:
        result = await list_owner_shares(
            db,
            auth.user_id,
            page=page,
            limit=limit,
            sort=sort,
            order=order,
            include_inactive=include_inactive,
        )
        return {
            "shares": [serialize_owner_share(link) for link in result["shares"]],
            "pagination": result["pagination"],
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to list shares for user=%s", auth.user_id)
        raise HTTPException(status_code=500, detail="Failed to list shares.")


@router.get("/analytics")
async def get_my_share_analytics(
    date_from: Optional[datetime] = Query(default=None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(default=None, alias="dateTo"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_owner_share_analytics(db, auth.user_id, date_from, date_to)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to build share analytics for user=%s", auth.user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch share analytics.")


@router.get("/shared/{share_url}")
async def view_shared_scenario(
    share_url: str,
    request: Request,
    password: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Public view of a shared scenario. Every successful view is counted."""
    try:
        link = await fetch_accessible_share(db, share_url, password)
        await record_view(
            db,
            link.share_url,
            device=detect_device(request.headers.get("user-agent")),
            country=request.headers.get("cf-ipcountry"),
            referrer=request.headers.get("referer"),
        )
        await db.refresh(link)
        return {"scenario": serialize_public_share(link)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to resolve shared scenario share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to fetch shared scenario.")


@router.get("/metadata/{share_url}")
async def get_share_metadata(
    share_url: str,
    db: AsyncSession = Depends(get_db),
):
    """Open Graph style preview data for link unfurling."""
    try:
        link = await get_share_link(db, share_url)
        ensure_accessible(link, datetime.now(timezone.utc))
        return get_social_metadata(link)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to build metadata share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to fetch share metadata.")


@router.get("/qr/{share_url}")
async def get_share_qr_code(
    share_url: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        link = await get_share_link(db, share_url)
        ensure_accessible(link, datetime.now(timezone.utc))
        png = render_share_qr_png(link)
        await record_share(db, link.share_url, "qr")
        return Response(content=png, media_type="image/png")
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to render QR code share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to generate QR code.")


@router.get("/share/{share_url}")
async def get_owned_share(
    share_url: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Owner management view, including hidden or expired links."""
    try:
        link = await get_share_link(db, share_url)
        if link.owner_id != auth.user_id:
            raise AccessDenied()
        return {"share": serialize_owner_share(link, await get_share_counters(db, link.share_url))}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to fetch share share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to fetch share.")


@router.patch("/share/{share_url}")
async def patch_share(
    share_url: str,
    request: UpdateShareRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        link = await update_share_link(db, share_url, auth.user_id, request.model_dump(exclude_unset=True))
        return {"share": serialize_owner_share(link)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to update share share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to update share.")


@router.delete("/share/{share_url}")
async def delete_share(
    share_url: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Revoke a share link. The record is kept."""
    try:
        await revoke_share_link(db, share_url, auth.user_id)
        return {"shareUrl": share_url, "isActive": False}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to revoke share share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to revoke share.")


@router.post("/share/{share_url}/record")
async def record_share_click(
    share_url: str,
    request: RecordShareRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        link = await get_share_link(db, share_url)
        ensure_accessible(link, datetime.now(timezone.utc))
        platform = await record_share(db, link.share_url, request.platform)
        await db.refresh(link)
        return {"shareUrl": link.share_url, "platform": platform, "shareCount": int(link.share_count or 0)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to record share event share_url=%s", share_url)
        raise HTTPException(status_code=500, detail="Failed to record share.")


@router.post("/{scenario_id}", status_code=201)
async def share_scenario(
    scenario_id: str,
    request: CreateShareRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Create a public link for one of the caller's scenarios."""
    try:
        link = await create_share_link(
            scenario_id=scenario_id,
            owner_id=auth.user_id,
            db=db,
            title=request.title,
            description=request.description,
            preview_image=request.preview_image,
            password=request.password,
            expires_at=request.expires_at,
            force_new=request.force_new,
        )
        return _creation_payload(link)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Failed to create share for scenario=%s", scenario_id)
        raise HTTPException(status_code=500, detail="Failed to create share link.")
