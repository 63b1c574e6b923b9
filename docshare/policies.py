# docshare/policies.py
"""
Input rules for uploads, titles and sharing requests.
Each check raises ValidationError with a human-readable message.
"""

from typing import List, Optional, Sequence

from docshare.errors import ValidationError
from docshare.models import Permission

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB
MAX_TITLE_LENGTH = 100
MAX_BATCH_TARGETS = 50
MIN_PASSWORD_LENGTH = 6

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/zip",
    "application/x-zip-compressed",
})


def validate_title(title: Optional[str]) -> str:
    if not title or not title.strip():
        raise ValidationError("Document title is required")
    title = title.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
    return title


def validate_upload(filename: Optional[str], mime_type: Optional[str], size: int) -> None:
    if not filename:
        raise ValidationError("No file provided")
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"File type {mime_type} not allowed")
    if size > MAX_FILE_SIZE:
        raise ValidationError("File too large. Maximum size is 50MB")


def validate_permission(permission: str) -> Permission:
    try:
        return Permission(permission)
    except ValueError:
        raise ValidationError('Permissions must be either "read" or "write"') from None


def normalize_emails(emails: Sequence[str]) -> List[str]:
    if not emails:
        raise ValidationError("Document ID and array of user emails are required")
    if len(emails) > MAX_BATCH_TARGETS:
        raise ValidationError(f"Cannot share with more than {MAX_BATCH_TARGETS} users at once")
    return [e.strip().lower() for e in emails]


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return password
