# docshare/models.py
"""
Record-store entities.

Access rules on `Document` are plain methods over the value itself so that
both record stores (and the tests) share one definition of "who may read".
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"


OWNER_PERMISSION = "owner"


@dataclass
class ShareEntry:
    user_id: str
    permission: Permission = Permission.READ
    shared_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user_id,
            "permissions": self.permission.value,
            "sharedAt": self.shared_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ShareEntry":
        return cls(
            user_id=raw["user"],
            permission=Permission(raw.get("permissions", "read")),
            shared_at=datetime.fromisoformat(raw["sharedAt"]),
        )


@dataclass
class User:
    name: str
    email: str
    password_hash: str
    id: str = field(default_factory=new_id)
    wallet_address: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None

    def public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "walletAddress": self.wallet_address,
            "createdAt": self.created_at.isoformat(),
        }

    def brief(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass
class Document:
    title: str
    original_name: str
    mime_type: str
    size: int
    blob_hash: str
    ledger_document_id: str
    owner_id: str
    id: str = field(default_factory=new_id)
    description: str = ""
    is_encrypted: bool = False
    encryption_key: Optional[str] = field(default=None, repr=False)
    shared_with: List[ShareEntry] = field(default_factory=list)
    download_count: int = 0
    last_accessed_at: datetime = field(default_factory=utcnow)
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_shared(self) -> bool:
        return len(self.shared_with) > 0

    def is_owner(self, user_id: str) -> bool:
        return self.owner_id == str(user_id)

    def share_entry(self, user_id: str) -> Optional[ShareEntry]:
        user_id = str(user_id)
        return next((s for s in self.shared_with if s.user_id == user_id), None)

    def has_access(self, user_id: str) -> bool:
        return self.is_owner(user_id) or self.share_entry(user_id) is not None

    def get_user_permission(self, user_id: str) -> Optional[str]:
        if self.is_owner(user_id):
            return OWNER_PERMISSION
        entry = self.share_entry(user_id)
        return entry.permission.value if entry else None

    def share_with(self, user_id: str, permission: Permission = Permission.READ) -> bool:
        """Add or update a share. False when nothing changed (owner, or same permission)."""
        if self.is_owner(user_id):
            return False
        permission = Permission(permission)
        entry = self.share_entry(user_id)
        if entry is not None:
            if entry.permission == permission:
                return False
            entry.permission = permission
            entry.shared_at = utcnow()
            return True
        self.shared_with.append(ShareEntry(user_id=str(user_id), permission=permission))
        return True

    def unshare_with(self, user_id: str) -> bool:
        before = len(self.shared_with)
        self.shared_with = [s for s in self.shared_with if s.user_id != str(user_id)]
        return len(self.shared_with) < before

    def deactivate(self) -> None:
        # soft delete is one-way
        self.is_active = False
        self.updated_at = utcnow()

    def record_download(self) -> None:
        self.download_count += 1
        self.last_accessed_at = utcnow()

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "size": self.size,
            "isEncrypted": self.is_encrypted,
            "downloadCount": self.download_count,
            "isShared": self.is_shared,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "lastAccessedAt": self.last_accessed_at.isoformat(),
            "owner": self.owner_id,
        }

    def detail(self) -> Dict[str, Any]:
        return {
            **self.summary(),
            "ipfsHash": self.blob_hash,
            "blockchainDocumentId": self.ledger_document_id,
            "sharedWith": [s.to_dict() for s in self.shared_with],
        }
