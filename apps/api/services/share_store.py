"""Share-link store: creation, lookup, owner management, atomic counters and expiry."""

from __future__ import annotations

import io
import logging
import math
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from sqlalchemy import case, func, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.scenario import Scenario
from models.share_link import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH, ShareLink, ShareLinkCounter
from services.access_policy import AccessState, as_utc, evaluate_access, is_expired
from services.crypto import hash_password, verify_password
from services.errors import (
    AccessDenied,
    NotFound,
    PasswordIncorrect,
    PasswordRequired,
    ShareExpired,
    ShareHidden,
    ShareInactive,
    ValidationFailed,
)

logger = logging.getLogger(__name__)


EVENT_VIEW = "view"
EVENT_SHARE = "share"
PATCHABLE_FIELDS = {"title", "description", "preview_image", "password", "expires_at", "is_active"}
SORTABLE_FIELDS = {"created_at", "view_count", "share_count", "expires_at"}
QR_ERROR_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _execute_read(db: AsyncSession, stmt):
    """Run an idempotent read, retrying once on a transient driver failure."""
    try:
        return await db.execute(stmt)
    except OperationalError as exc:
        logger.warning("Share read failed, retrying once: %s", exc)
        await db.rollback()
        return await db.execute(stmt)


def _validate_display(title: Optional[str], description: Optional[str]) -> None:
    if title is not None and len(title) > TITLE_MAX_LENGTH:
        raise ValidationFailed(f"title must be at most {TITLE_MAX_LENGTH} characters.", field="title")
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationFailed(
            f"description must be at most {DESCRIPTION_MAX_LENGTH} characters.",
            field="description",
        )


def _validate_future_expiry(expires_at: Optional[datetime], now: datetime) -> Optional[datetime]:
    if expires_at is None:
        return None
    expires_at = as_utc(expires_at)
    if expires_at <= now:
        raise ValidationFailed("expiresAt must be in the future.", field="expiresAt")
    return expires_at


def _snapshot(scenario: Scenario) -> Dict[str, Any]:
    generated_at = as_utc(scenario.created_at)
    return {
        "topic": scenario.topic,
        "content": scenario.content,
        "promptType": scenario.prompt_type or "default",
        "tags": list(scenario.tags or []),
        "generatedAt": generated_at.isoformat() if generated_at else None,
    }


async def _allocate_share_token(db: AsyncSession) -> str:
    attempts = max(int(settings.SHARE_TOKEN_MAX_ATTEMPTS), 1)
    for _ in range(attempts):
        token = secrets.token_urlsafe(max(int(settings.SHARE_TOKEN_BYTES), 12))
        if await db.get(ShareLink, token) is None:
            return token
        logger.warning("Share token collision, regenerating")
    raise RuntimeError("Could not allocate a unique share token.")


async def _allocate_short_url(db: AsyncSession) -> Optional[str]:
    domain = (settings.URL_SHORTENER_DOMAIN or "").strip().strip("/")
    if not domain:
        return None
    for _ in range(max(int(settings.SHARE_TOKEN_MAX_ATTEMPTS), 1)):
        candidate = f"https://{domain}/{secrets.token_urlsafe(6)}"
        result = await db.execute(select(ShareLink.share_url).where(ShareLink.short_url == candidate))
        if result.scalar_one_or_none() is None:
            return candidate
    logger.warning("Short URL allocation failed for domain %s", domain)
    return None


def build_share_urls(link: ShareLink) -> Dict[str, str]:
    origin = (settings.FRONTEND_URL or "http://localhost:3005").rstrip("/")
    return {
        "fullUrl": f"{origin}/shared/{link.share_url}",
        "qrCodeUrl": f"{origin}/api/sharing/qr/{link.share_url}",
    }


async def create_share_link(
    *,
    scenario_id: str,
    owner_id: str,
    db: AsyncSession,
    title: Optional[str] = None,
    description: Optional[str] = None,
    preview_image: Optional[str] = None,
    password: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    force_new: bool = False,
    now: Optional[datetime] = None,
) -> ShareLink:
    """Mint a share link for a scenario owned by ``owner_id``."""
    now = now or _now()
    _validate_display(title, description)
    expires_at = _validate_future_expiry(expires_at, now)
    if password is not None and not password:
        raise ValidationFailed("password must not be empty.", field="password")

    scenario_result = await db.execute(
        select(Scenario).where(
            Scenario.id == scenario_id,
            Scenario.user_id == owner_id,
        )
    )
    scenario = scenario_result.scalar_one_or_none()
    if not scenario:
        raise NotFound("Scenario not found or access denied.")

    # A plain re-share returns the owner's live link instead of minting another.
    plain_request = password is None and expires_at is None
    if plain_request and not force_new:
        existing_result = await db.execute(
            select(ShareLink)
            .where(
                ShareLink.scenario_id == scenario_id,
                ShareLink.owner_id == owner_id,
                ShareLink.is_active.is_(True),
                ShareLink.is_hidden.is_(False),
                ShareLink.password_hash.is_(None),
            )
            .order_by(ShareLink.created_at.desc())
            .limit(1)
        )
        existing = existing_result.scalar_one_or_none()
        if existing and not is_expired(existing, now):
            logger.info("Returning existing share %s for scenario %s", existing.share_url, scenario_id)
            return existing

    link = ShareLink(
        share_url=await _allocate_share_token(db),
        short_url=await _allocate_short_url(db),
        scenario_id=scenario_id,
        owner_id=owner_id,
        snapshot=_snapshot(scenario),
        is_active=True,
        is_hidden=False,
        password_hash=hash_password(password) if password else None,
        expires_at=expires_at,
        title=title,
        description=description,
        preview_image=preview_image,
        view_count=0,
        share_count=0,
        report_count=0,
        created_at=now,
    )
    db.add(link)
    await db.commit()
    await db.refresh(link)

    logger.info(
        "Share created share_url=%s scenario=%s owner=%s protected=%s",
        link.share_url,
        scenario_id,
        owner_id,
        link.is_password_protected,
    )
    return link


async def get_share_link(db: AsyncSession, share_url: str) -> ShareLink:
    """Plain lookup with no access policy; owners manage hidden/expired links through this."""
    token = str(share_url or "").strip()
    if not token:
        raise NotFound("Shared scenario not found.")
    result = await _execute_read(
        db,
        select(ShareLink).where(ShareLink.share_url == token).execution_options(populate_existing=True),
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound("Shared scenario not found.")
    return link


def ensure_accessible(link: ShareLink, now: datetime) -> None:
    state = evaluate_access(link, now)
    if state == AccessState.HIDDEN:
        logger.warning("Blocked access to hidden share %s", link.share_url)
        raise ShareHidden()
    if state == AccessState.INACTIVE:
        raise ShareInactive()
    if state == AccessState.EXPIRED:
        logger.warning("Blocked access to expired share %s", link.share_url)
        raise ShareExpired()


async def fetch_accessible_share(
    db: AsyncSession,
    share_url: str,
    password: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ShareLink:
    """Lookup plus access policy plus password gate."""
    now = now or _now()
    link = await get_share_link(db, share_url)
    ensure_accessible(link, now)

    if link.password_hash:
        if not password:
            raise PasswordRequired()
        if not verify_password(password, link.password_hash):
            logger.warning("Incorrect password for share %s", link.share_url)
            raise PasswordIncorrect()
    return link


async def _get_owned_share(db: AsyncSession, share_url: str, owner_id: str) -> ShareLink:
    link = await get_share_link(db, share_url)
    if link.owner_id != owner_id:
        logger.warning("Owner mismatch on share %s (requester=%s)", share_url, owner_id)
        raise AccessDenied()
    return link


async def update_share_link(
    db: AsyncSession,
    share_url: str,
    owner_id: str,
    patch: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> ShareLink:
    """
    Apply an owner patch.

    ``password=None`` clears protection; ``expires_at=None`` removes expiry.
    Unknown keys are rejected.
    """
    now = now or _now()
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValidationFailed(f"Unsupported fields: {', '.join(sorted(unknown))}.", field=sorted(unknown)[0])

    link = await _get_owned_share(db, share_url, owner_id)
    _validate_display(patch.get("title"), patch.get("description"))

    if "expires_at" in patch:
        link.expires_at = _validate_future_expiry(patch["expires_at"], now)
    if "password" in patch:
        password = patch["password"]
        if password is not None and not password:
            raise ValidationFailed("password must not be empty.", field="password")
        link.password_hash = hash_password(password) if password else None
    for field in ("title", "description", "preview_image"):
        if field in patch:
            setattr(link, field, patch[field])
    if "is_active" in patch and patch["is_active"] is not None:
        link.is_active = bool(patch["is_active"])

    await db.commit()
    await db.refresh(link)
    logger.info("Share %s updated fields=%s", share_url, sorted(patch))
    return link


async def revoke_share_link(db: AsyncSession, share_url: str, owner_id: str) -> None:
    """Deactivate a link. The record and its history stay."""
    link = await _get_owned_share(db, share_url, owner_id)
    link.is_active = False
    await db.commit()
    logger.info("Share %s revoked by owner %s", share_url, owner_id)


def _counter_upsert(db: AsyncSession, share_url: str, dimension: str, bucket: str):
    dialect = db.get_bind().dialect.name
    values = {"share_url": share_url, "dimension": dimension, "bucket": bucket, "count": 1}
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        return None
    stmt = dialect_insert(ShareLinkCounter).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=["share_url", "dimension", "bucket"],
        set_={"count": ShareLinkCounter.count + 1},
    )


async def _increment_bucket(db: AsyncSession, share_url: str, dimension: str, bucket: str) -> None:
    stmt = _counter_upsert(db, share_url, dimension, bucket)
    if stmt is not None:
        await db.execute(stmt)
        return
    result = await db.execute(
        update(ShareLinkCounter)
        .where(
            ShareLinkCounter.share_url == share_url,
            ShareLinkCounter.dimension == dimension,
            ShareLinkCounter.bucket == bucket,
        )
        .values(count=ShareLinkCounter.count + 1)
    )
    if not result.rowcount:
        db.add(ShareLinkCounter(share_url=share_url, dimension=dimension, bucket=bucket, count=1))
        await db.flush()


async def record_share_event(
    db: AsyncSession,
    share_url: str,
    kind: str,
    dims: Optional[Mapping[str, Optional[str]]] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Server-side increments for a view or share event.

    The base counter always moves; each dimension bucket is optional and
    independent. ``first_access_at`` is only written while still null.
    """
    if kind not in (EVENT_VIEW, EVENT_SHARE):
        raise ValidationFailed(f"Unknown event kind: {kind}.", field="kind")
    now = now or _now()
    counter_column = ShareLink.view_count if kind == EVENT_VIEW else ShareLink.share_count

    result = await db.execute(
        update(ShareLink)
        .where(ShareLink.share_url == share_url)
        .values(
            {
                counter_column: counter_column + 1,
                ShareLink.first_access_at: func.coalesce(ShareLink.first_access_at, now),
                ShareLink.last_access_at: now,
            }
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        await db.rollback()
        raise NotFound("Shared scenario not found.")

    for dimension, bucket in (dims or {}).items():
        if bucket:
            await _increment_bucket(db, share_url, dimension, str(bucket))
    await db.commit()


async def set_share_hidden(
    db: AsyncSession,
    share_url: str,
    hidden: bool,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    override: bool = False,
) -> bool:
    """
    Hide or unhide a link for moderation. Returns True when a row was written.

    Hiding an already hidden link keeps its original ``hidden_at``/``hidden_reason``
    unless ``override`` is set, which restamps them (a moderator decision replacing
    a threshold hide).
    """
    now = now or _now()
    if hidden:
        conditions = [ShareLink.share_url == share_url]
        if not override:
            conditions.append(ShareLink.is_hidden.is_(False))
        stmt = (
            update(ShareLink)
            .where(*conditions)
            .values(is_hidden=True, hidden_at=now, hidden_reason=reason or "Hidden by moderator")
        )
    else:
        stmt = (
            update(ShareLink)
            .where(
                ShareLink.share_url == share_url,
                ShareLink.is_hidden.is_(True),
                ShareLink.report_count < max(int(settings.REPORT_THRESHOLD_FOR_HIDE), 1),
            )
            .values(is_hidden=False, hidden_at=None, hidden_reason=None)
        )
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    await db.commit()
    changed = bool(result.rowcount)
    if changed:
        logger.info("Share %s %s (%s)", share_url, "hidden" if hidden else "unhidden", reason)
    return changed


async def deactivate_share_link(db: AsyncSession, share_url: str) -> None:
    await db.execute(
        update(ShareLink)
        .where(ShareLink.share_url == share_url)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def reap_expired_shares(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Deactivate every active link past ``expires_at``. Reads never depend on this having run."""
    now = now or _now()
    result = await db.execute(
        select(ShareLink).where(
            ShareLink.is_active.is_(True),
            ShareLink.expires_at.is_not(None),
            ShareLink.expires_at <= now,
        )
    )
    expired = [link for link in result.scalars().all() if is_expired(link, now)]
    for link in expired:
        link.is_active = False
    if expired:
        await db.commit()
        logger.info("Reaped %d expired shares", len(expired))
    return len(expired)


async def list_owner_shares(
    db: AsyncSession,
    owner_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    sort: str = "created_at",
    order: str = "desc",
    include_inactive: bool = False,
) -> Dict[str, Any]:
    page = max(int(page), 1)
    limit = max(min(int(limit), 100), 1)
    sort_column = getattr(ShareLink, sort if sort in SORTABLE_FIELDS else "created_at")
    ordering = sort_column.asc() if order == "asc" else sort_column.desc()

    filters = [ShareLink.owner_id == owner_id]
    if not include_inactive:
        filters.append(ShareLink.is_active.is_(True))

    total = int((await db.execute(select(func.count()).select_from(ShareLink).where(*filters))).scalar() or 0)
    result = await _execute_read(
        db,
        select(ShareLink).where(*filters).order_by(ordering).offset((page - 1) * limit).limit(limit),
    )
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "shares": list(result.scalars().all()),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }


async def get_owner_share_analytics(
    db: AsyncSession,
    owner_id: str,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Dict[str, Any]:
    filters = [ShareLink.owner_id == owner_id]
    if date_from:
        filters.append(ShareLink.created_at >= as_utc(date_from))
    if date_to:
        filters.append(ShareLink.created_at <= as_utc(date_to))

    totals = (
        await db.execute(
            select(
                func.count(ShareLink.share_url),
                func.coalesce(func.sum(ShareLink.view_count), 0),
                func.coalesce(func.sum(ShareLink.share_count), 0),
                func.coalesce(func.sum(case((ShareLink.is_active.is_(True), 1), else_=0)), 0),
            ).where(*filters)
        )
    ).one()

    platform_rows = await db.execute(
        select(ShareLinkCounter.bucket, func.sum(ShareLinkCounter.count))
        .join(ShareLink, ShareLink.share_url == ShareLinkCounter.share_url)
        .where(*filters, ShareLinkCounter.dimension == "platform")
        .group_by(ShareLinkCounter.bucket)
    )
    return {
        "totalShares": int(totals[0] or 0),
        "totalViews": int(totals[1] or 0),
        "totalShareEvents": int(totals[2] or 0),
        "activeShares": int(totals[3] or 0),
        "platformStats": {bucket: int(count or 0) for bucket, count in platform_rows.all()},
    }


def render_share_qr_png(link: ShareLink) -> bytes:
    """PNG QR code pointing at the link's public URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=QR_ERROR_LEVELS.get(str(settings.QR_CODE_ERROR_CORRECTION).upper(), ERROR_CORRECT_M),
        box_size=max(int(settings.QR_CODE_BOX_SIZE), 1),
        border=max(int(settings.QR_CODE_BORDER), 0),
    )
    qr.add_data(build_share_urls(link)["fullUrl"])
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def get_social_metadata(link: ShareLink) -> Dict[str, Any]:
    snapshot = link.snapshot or {}
    content = str(snapshot.get("content") or "")
    if link.description:
        description = link.description
    elif link.password_hash:
        description = "This scenario is password protected."
    else:
        description = content[:150] + "..." if len(content) > 150 else content
    return {
        "title": link.title or f"What if: {snapshot.get('topic', '')}".strip(),
        "description": description,
        "url": build_share_urls(link)["fullUrl"],
        "image": link.preview_image,
        "type": "article",
        "site_name": "What If Generator",
    }


def serialize_public_share(link: ShareLink) -> Dict[str, Any]:
    created_at = as_utc(link.created_at)
    return {
        "shareUrl": link.share_url,
        "title": link.title,
        "description": link.description,
        "scenarioData": link.snapshot,
        "viewCount": int(link.view_count or 0),
        "shareCount": int(link.share_count or 0),
        "createdAt": created_at.isoformat() if created_at else None,
    }


def serialize_owner_share(link: ShareLink, counters: Optional[Dict[str, Dict[str, int]]] = None) -> Dict[str, Any]:
    def _iso(value: Optional[datetime]) -> Optional[str]:
        value = as_utc(value)
        return value.isoformat() if value else None

    payload = serialize_public_share(link)
    payload.update(
        {
            "scenarioId": link.scenario_id,
            "shortUrl": link.short_url,
            "previewImage": link.preview_image,
            "isActive": bool(link.is_active),
            "isHidden": bool(link.is_hidden),
            "hiddenAt": _iso(link.hidden_at),
            "hiddenReason": link.hidden_reason,
            "isPasswordProtected": link.is_password_protected,
            "expiresAt": _iso(link.expires_at),
            "reportCount": int(link.report_count or 0),
            "firstAccessAt": _iso(link.first_access_at),
            "lastAccessAt": _iso(link.last_access_at),
            **build_share_urls(link),
        }
    )
    if counters is not None:
        payload.update(counters)
    return payload
