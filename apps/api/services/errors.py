"""Domain errors for sharing and moderation, mapped to HTTP status and a machine-readable code."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException


class SharingError(HTTPException):
    """Base class: carries ``{"code", "message", ...}`` as the response detail."""

    status_code = 400
    code = "error"
    default_message = "Request failed."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        detail = {"code": self.code, "message": message or self.default_message}
        detail.update(extra)
        super().__init__(status_code=self.status_code, detail=detail)

    @property
    def message(self) -> str:
        return str(self.detail.get("message", ""))


class ValidationFailed(SharingError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input."

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None, **extra: Any):
        if field:
            extra["field"] = field
        super().__init__(message, **extra)


class NotFound(SharingError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class AccessDenied(NotFound):
    """Mutation by a non-owner. Answered as not-found to avoid leaking existence."""

    default_message = "Shared scenario not found."


class ShareExpired(NotFound):
    """Past ``expires_at``. Not-found to the caller, distinguishable in logs."""

    default_message = "Shared scenario not found or expired."


class PasswordRequired(SharingError):
    status_code = 401
    code = "password_required"
    default_message = "Password required."


class PasswordIncorrect(SharingError):
    status_code = 401
    code = "password_incorrect"
    default_message = "Password incorrect."


class ShareHidden(SharingError):
    status_code = 403
    code = "share_hidden"
    default_message = "Shared scenario is not accessible."


class ShareInactive(SharingError):
    status_code = 403
    code = "share_inactive"
    default_message = "Shared scenario is no longer active."


class PermissionDenied(SharingError):
    status_code = 403
    code = "forbidden"
    default_message = "Insufficient permissions."


class DuplicateReport(SharingError):
    status_code = 409
    code = "duplicate_report"
    default_message = "You have already reported this content."

    def __init__(self, existing_report_id: str, message: Optional[str] = None):
        self.existing_report_id = existing_report_id
        super().__init__(message, isDuplicate=True, existingReportId=existing_report_id)


class InvalidTransition(SharingError):
    status_code = 400
    code = "invalid_transition"
    default_message = "Report cannot transition from its current status."

    def __init__(self, current_status: str, target_status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Report is {current_status}; cannot move to {target_status}.",
            status=current_status,
            requestedStatus=target_status,
        )
