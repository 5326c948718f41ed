"""ShareLink model for public, access-controlled scenario links."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 300


class ShareLink(Base):
    """Token-addressed public view of a scenario snapshot."""

    __tablename__ = "share_links"

    share_url = Column(String, primary_key=True)
    short_url = Column(String, nullable=True, unique=True)
    scenario_id = Column(String, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)

    # Copy of the scenario at share time; never re-synced.
    snapshot = Column(JSON, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    is_hidden = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    title = Column(String(TITLE_MAX_LENGTH), nullable=True)
    description = Column(String(DESCRIPTION_MAX_LENGTH), nullable=True)
    preview_image = Column(String, nullable=True)

    view_count = Column(Integer, nullable=False, default=0)
    share_count = Column(Integer, nullable=False, default=0)
    report_count = Column(Integer, nullable=False, default=0)

    first_access_at = Column(DateTime(timezone=True), nullable=True)
    last_access_at = Column(DateTime(timezone=True), nullable=True)
    hidden_at = Column(DateTime(timezone=True), nullable=True)
    hidden_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    counters = relationship("ShareLinkCounter", back_populates="share_link", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_share_links_owner_created", "owner_id", "created_at"),
        Index("ix_share_links_active_hidden", "is_active", "is_hidden"),
    )

    @property
    def is_password_protected(self) -> bool:
        return bool(self.password_hash)


class ShareLinkCounter(Base):
    """One dimensional analytics bucket (device, country, referrer or platform) for a share."""

    __tablename__ = "share_link_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    share_url = Column(String, ForeignKey("share_links.share_url", ondelete="CASCADE"), nullable=False, index=True)
    dimension = Column(String, nullable=False)  # platform, device, country, referrer
    bucket = Column(String, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    share_link = relationship("ShareLink", back_populates="counters")

    __table_args__ = (
        UniqueConstraint("share_url", "dimension", "bucket", name="uq_share_link_counters_bucket"),
    )
