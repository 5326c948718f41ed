"""View/share analytics: request dimension extraction and counter reads."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.share_link import ShareLinkCounter
from services.share_store import EVENT_SHARE, EVENT_VIEW, record_share_event

logger = logging.getLogger(__name__)


SHARE_PLATFORMS = (
    "facebook",
    "twitter",
    "linkedin",
    "whatsapp",
    "telegram",
    "email",
    "copy",
    "qr",
    "other",
)
DEVICE_TYPES = ("desktop", "mobile", "tablet")

_TABLET_PATTERN = re.compile(r"ipad|tablet|kindle|silk|playbook|android(?!.*mobile)", re.IGNORECASE)
_MOBILE_PATTERN = re.compile(r"mobile|iphone|ipod|android|blackberry|opera mini|iemobile|windows phone", re.IGNORECASE)
_DESKTOP_PATTERN = re.compile(r"windows nt|macintosh|mac os x|x11|linux|cros", re.IGNORECASE)
_COUNTRY_PATTERN = re.compile(r"^[A-Za-z]{2}$")

COUNTER_KEYS = {
    "platform": "sharesByPlatform",
    "device": "viewsByDevice",
    "country": "viewsByCountry",
    "referrer": "referrers",
}


def detect_device(user_agent: Optional[str]) -> Optional[str]:
    """Classify a user agent; unrecognized agents get no device bucket."""
    agent = str(user_agent or "").strip()
    if not agent:
        return None
    if _TABLET_PATTERN.search(agent):
        return "tablet"
    if _MOBILE_PATTERN.search(agent):
        return "mobile"
    if _DESKTOP_PATTERN.search(agent):
        return "desktop"
    return None


def normalize_platform(platform: Optional[str]) -> str:
    value = str(platform or "").strip().lower()
    return value if value in SHARE_PLATFORMS else "other"


def normalize_country(country: Optional[str]) -> Optional[str]:
    # Cloudflare sends XX for unknown and T1 for Tor.
    value = str(country or "").strip().upper()
    if not _COUNTRY_PATTERN.match(value) or value == "XX":
        return None
    return value


def normalize_referrer(referrer: Optional[str]) -> Optional[str]:
    value = str(referrer or "").strip()
    if not value:
        return None
    host = urlparse(value).netloc.lower()
    return (host or value)[:255]


async def record_view(
    db: AsyncSession,
    share_url: str,
    *,
    device: Optional[str] = None,
    country: Optional[str] = None,
    referrer: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    dims = {
        "device": device if device in DEVICE_TYPES else None,
        "country": normalize_country(country),
        "referrer": normalize_referrer(referrer),
    }
    await record_share_event(db, share_url, EVENT_VIEW, dims, now=now)
    logger.info("View recorded share_url=%s device=%s", share_url, dims["device"])


async def record_share(
    db: AsyncSession,
    share_url: str,
    platform: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Count a share event; returns the platform bucket it landed in."""
    bucket = normalize_platform(platform)
    if bucket == "other" and platform:
        logger.info("Unrecognized share platform %r counted as other", platform)
    await record_share_event(db, share_url, EVENT_SHARE, {"platform": bucket}, now=now)
    logger.info("Share recorded share_url=%s platform=%s", share_url, bucket)
    return bucket


async def get_share_counters(db: AsyncSession, share_url: str) -> Dict[str, Dict[str, int]]:
    result = await db.execute(
        select(ShareLinkCounter.dimension, ShareLinkCounter.bucket, ShareLinkCounter.count).where(
            ShareLinkCounter.share_url == share_url
        )
    )
    grouped: Dict[str, Dict[str, int]] = defaultdict(dict)
    for dimension, bucket, count in result.all():
        grouped[dimension][bucket] = int(count or 0)
    return {key: dict(grouped.get(dimension, {})) for dimension, key in COUNTER_KEYS.items()}
