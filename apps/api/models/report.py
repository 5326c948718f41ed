"""Report model for user-submitted abuse reports."""

from enum import Enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, text
from sqlalchemy.sql import func

from database import Base


DESCRIPTION_MAX_LENGTH = 500
NOTES_MAX_LENGTH = 1000


class TargetType(str, Enum):
    SCENARIO = "scenario"
    SHARED_SCENARIO = "shared_scenario"


class ReportReason(str, Enum):
    INAPPROPRIATE_CONTENT = "inappropriate_content"
    SPAM = "spam"
    HARASSMENT = "harassment"
    VIOLENCE = "violence"
    HATE_SPEECH = "hate_speech"
    ADULT_CONTENT = "adult_content"
    MISINFORMATION = "misinformation"
    COPYRIGHT_VIOLATION = "copyright_violation"
    OTHER = "other"


class ReportCategory(str, Enum):
    CONTENT = "content"
    BEHAVIOR = "behavior"
    TECHNICAL = "technical"
    LEGAL = "legal"


class ReportSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"
    ESCALATED = "escalated"


class ModerationAction(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CONTENT_HIDDEN = "content_hidden"
    CONTENT_REMOVED = "content_removed"
    USER_WARNED = "user_warned"
    USER_SUSPENDED = "user_suspended"
    USER_BANNED = "user_banned"
    ESCALATED_TO_ADMIN = "escalated_to_admin"


OPEN_STATUSES = (ReportStatus.PENDING.value, ReportStatus.UNDER_REVIEW.value)
TERMINAL_STATUSES = (
    ReportStatus.RESOLVED.value,
    ReportStatus.DISMISSED.value,
    ReportStatus.ESCALATED.value,
)

_OPEN_STATUS_CLAUSE = text("status IN ('pending', 'under_review')")


class Report(Base):
    """Abuse report against a scenario or a shared scenario link. Never deleted."""

    __tablename__ = "reports"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    target_type = Column(String, nullable=False)
    target_id = Column(String, nullable=False, index=True)
    scenario_id = Column(String, nullable=False, index=True)
    share_url = Column(String, nullable=True, index=True)

    reporter_id = Column(String, nullable=True)  # null for anonymous reports
    reporter_ip = Column(String, nullable=False)
    reporter_identity = Column(String, nullable=False)
    reporter_user_agent = Column(String, nullable=True)

    reason = Column(String, nullable=False)
    category = Column(String, nullable=False, default=ReportCategory.CONTENT.value)
    severity = Column(String, nullable=False, default=ReportSeverity.MEDIUM.value)
    description = Column(String(DESCRIPTION_MAX_LENGTH), nullable=True)

    status = Column(String, nullable=False, default=ReportStatus.PENDING.value)
    priority_score = Column(Integer, nullable=False, default=0)

    is_auto_moderated = Column(Boolean, nullable=False, default=False)
    auto_moderation_score = Column(Float, nullable=True)

    action_taken = Column(String, nullable=False, default=ModerationAction.NONE.value)
    action_reason = Column(String, nullable=True)
    resolution = Column(String, nullable=True)
    moderator_notes = Column(String(NOTES_MAX_LENGTH), nullable=True)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        # One open report per (target, reporter identity); enforced by the store, not just the read-check.
        Index(
            "uq_reports_open_target_identity",
            "target_type",
            "target_id",
            "reporter_identity",
            unique=True,
            postgresql_where=_OPEN_STATUS_CLAUSE,
            sqlite_where=_OPEN_STATUS_CLAUSE,
        ),
        Index("ix_reports_status_priority", "status", "priority_score", "created_at"),
        Index("ix_reports_target_status", "target_id", "status"),
        Index("ix_reports_reason_status", "reason", "status"),
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def __repr__(self):
        return f"<Report(id={self.id}, target={self.target_type}:{self.target_id}, status={self.status})>"
