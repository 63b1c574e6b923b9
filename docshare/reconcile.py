# docshare/reconcile.py
"""
Keeps the record store, the blob store and the ledger in agreement about
each document: who owns it, who may read it, and whether it still exists.

Write ordering and failure policy per operation:

    upload    blob -> ledger -> record. Blob failure aborts. Ledger failure
              aborts too, leaving the stored blob behind (no compensation).
              Content already on record is rejected before the ledger write.
    grant     record check -> ledger -> record. In development mode a ledger
              failure is replaced by a synthesized receipt; in production it
              aborts before the record changes. A permission change on an
              existing share only touches the record.
    revoke    record check -> ledger -> record. Ledger failure always aborts.
    batch     one ledger call for all new grantees, then one record save.
    access    record AND ledger must both agree; an unreachable ledger is "no".
    download  like access, except development mode does not enforce the
              ledger half. The counter moves only after bytes were fetched.
    delete    ledger removal and blob unpin are best effort; the record is
              soft-deleted regardless.

Nothing here is atomic across stores and nothing is retried.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from docshare.errors import (
    AuthorizationError,
    ConflictError,
    LedgerError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from docshare.hashutil import ledger_metadata
from docshare.ledger import BatchReceipt, DocumentRegistration, LedgerReceipt, now_ms
from docshare.models import Document, Permission, ShareEntry, User, utcnow
from docshare.policies import normalize_emails, validate_title
from docshare.services import Services
from docshare.storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class UploadOutcome:
    document: Document
    registration: DocumentRegistration


@dataclass
class GrantOutcome:
    document: Document
    target: User
    entry: ShareEntry
    receipt: Optional[LedgerReceipt] = None  # None when only the permission level changed
    synthesized: bool = False

    @property
    def updated(self) -> bool:
        return self.receipt is None


@dataclass
class RevokeOutcome:
    document: Document
    target: User
    revoked_at: datetime
    receipt: LedgerReceipt


@dataclass
class BatchOutcome:
    document: Document
    receipt: BatchReceipt
    shared: List[Tuple[User, ShareEntry]] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    total_requested: int = 0


@dataclass
class AccessCheck:
    document: Document
    database: bool
    blockchain: bool
    permission: Optional[str]

    @property
    def has_access(self) -> bool:
        return self.database and self.blockchain


@dataclass
class DownloadOutcome:
    document: Document
    data: bytes
    ledger_verified: bool


@dataclass
class DeleteOutcome:
    document: Document
    ledger_removed: bool
    unpinned: bool


@dataclass
class SharingInfo:
    document: Document
    accessors: List[str]


class AccessReconciler:
    def __init__(self, store: RecordStore, services: Services,
                 clock: Callable[[], int] = now_ms):
        self.store = store
        self.blob_store = services.blob_store
        self.ledger = services.ledger
        self.wallets = services.wallets
        self.development_mode = services.development_mode
        self.clock = clock

    # -- record lookups -----------------------------------------------------

    async def _visible_document(self, document_id: str, user_id: str) -> Document:
        """Active document the user owns or is shared with; anything else is 404."""
        doc = await self.store.get_document(document_id)
        if doc is None or not doc.is_active or not doc.has_access(user_id):
            raise NotFoundError("Document not found")
        return doc

    async def _owned_document(self, document_id: str, owner_id: str, action: str) -> Document:
        doc = await self._visible_document(document_id, owner_id)
        if not doc.is_owner(owner_id):
            raise AuthorizationError(f"Only document owner can {action}")
        return doc

    # -- lifecycle ----------------------------------------------------------

    async def upload(self, owner: User, data: bytes, title: str, original_name: str,
                     mime_type: str, description: str = "", encrypt: bool = False) -> UploadOutcome:
        title = validate_title(title)
        description = (description or "").strip()

        stored = await self.blob_store.upload(data, encrypt=encrypt)
        if await self.store.find_document_by_blob_hash(stored.address) is not None:
            raise ConflictError("A document with identical content already exists")

        metadata = ledger_metadata({
            "title": title,
            "description": description,
            "originalName": original_name,
            "mimeType": mime_type,
            "size": len(data),
            "uploadedAt": utcnow().isoformat(),
        })
        try:
            registration = await self.ledger.add_document(
                owner.id, stored.address, metadata, timestamp_ms=self.clock())
        except LedgerError:
            logger.error("Ledger registration failed; blob %s stays stored without a record", stored.address)
            raise

        doc = await self.store.create_document(Document(
            title=title,
            description=description,
            original_name=original_name,
            mime_type=mime_type,
            size=len(data),
            blob_hash=stored.address,
            ledger_document_id=registration.document_id,
            owner_id=owner.id,
            is_encrypted=stored.encryption_key is not None,
            encryption_key=stored.encryption_key,
        ))

        if not owner.wallet_address:
            owner.wallet_address = registration.wallet_address
            await self.store.update_user(owner)

        logger.info("Document %s uploaded by %s (ledger id %s)", doc.id, owner.id, doc.ledger_document_id)
        return UploadOutcome(document=doc, registration=registration)

    async def get_document(self, user_id: str, document_id: str) -> Document:
        doc = await self._visible_document(document_id, user_id)
        doc.last_accessed_at = utcnow()
        return await self.store.save_document(doc)

    async def update_document(self, owner_id: str, document_id: str, title: str,
                              description: Optional[str] = None) -> Document:
        title = validate_title(title)
        doc = await self._owned_document(document_id, owner_id, "update")
        doc.title = title
        if description is not None:
            doc.description = description.strip()
        doc.updated_at = utcnow()
        # the contract has no metadata update; the ledger keeps the upload-time metadata
        return await self.store.save_document(doc)

    async def delete(self, owner_id: str, document_id: str) -> DeleteOutcome:
        doc = await self._owned_document(document_id, owner_id, "delete")

        ledger_removed = False
        try:
            await self.ledger.remove_document(owner_id, doc.ledger_document_id)
            ledger_removed = True
        except UpstreamError as e:
            logger.warning("Ledger removal failed for %s, continuing: %s", doc.id, e.message)

        unpinned = False
        try:
            unpinned = await self.blob_store.unpin(doc.blob_hash)
        except UpstreamError as e:
            logger.warning("Blob unpin failed for %s, continuing: %s", doc.id, e.message)

        doc.deactivate()
        doc = await self.store.save_document(doc)
        logger.info("Document %s deleted by owner", doc.id)
        return DeleteOutcome(document=doc, ledger_removed=ledger_removed, unpinned=unpinned)

    # -- sharing ------------------------------------------------------------

    async def grant(self, owner_id: str, document_id: str, target_email: str,
                    permission: Permission = Permission.READ) -> GrantOutcome:
        permission = Permission(permission)
        doc = await self._owned_document(document_id, owner_id, "share documents")

        target = await self.store.find_user_by_email(target_email)
        if target is None:
            raise NotFoundError("User not found")
        if target.id == doc.owner_id:
            raise ValidationError("Cannot share document with yourself")

        existing = doc.share_entry(target.id)
        if existing is not None:
            if existing.permission == permission:
                raise ValidationError("Document is already shared with this user")
            # the ledger grant is a plain boolean and already true
            doc.share_with(target.id, permission)
            doc.updated_at = utcnow()
            doc = await self.store.save_document(doc)
            return GrantOutcome(document=doc, target=target, entry=doc.share_entry(target.id))

        synthesized = False
        try:
            receipt = await self.ledger.grant_access(owner_id, doc.ledger_document_id, target.id)
        except LedgerError as e:
            if not self.development_mode:
                raise
            logger.warning("Ledger grant failed in development mode, sharing in the record store only: %s",
                           e.message)
            receipt = LedgerReceipt(
                transaction_hash="0xdev_" + secrets.token_hex(8),
                block_number=0,
                target_wallet_address=self.wallets.address_of(target.id),
            )
            synthesized = True

        doc.share_with(target.id, permission)
        doc.updated_at = utcnow()
        doc = await self.store.save_document(doc)
        return GrantOutcome(document=doc, target=target, entry=doc.share_entry(target.id),
                            receipt=receipt, synthesized=synthesized)

    async def revoke(self, owner_id: str, document_id: str, target_user_id: str) -> RevokeOutcome:
        doc = await self._owned_document(document_id, owner_id, "revoke access")

        target = await self.store.get_user(target_user_id)
        if target is None:
            raise NotFoundError("User not found")
        if doc.share_entry(target.id) is None:
            raise ValidationError("Document is not shared with this user")

        # no development-mode leniency: a missed revoke is worse than a missed grant
        receipt = await self.ledger.revoke_access(owner_id, doc.ledger_document_id, target.id)

        doc.unshare_with(target.id)
        doc.updated_at = utcnow()
        doc = await self.store.save_document(doc)
        return RevokeOutcome(document=doc, target=target, revoked_at=utcnow(), receipt=receipt)

    async def batch_grant(self, owner_id: str, document_id: str, emails: Sequence[str],
                          permission: Permission = Permission.READ) -> BatchOutcome:
        permission = Permission(permission)
        requested = normalize_emails(emails)
        doc = await self._owned_document(document_id, owner_id, "share documents")

        found = await self.store.find_users_by_emails(requested)
        if not found:
            raise NotFoundError("No valid users found")

        targets: List[User] = []
        seen = set()
        for user in found:
            if user.id == doc.owner_id or doc.share_entry(user.id) is not None or user.id in seen:
                continue
            seen.add(user.id)
            targets.append(user)
        if not targets:
            raise ValidationError("No new users to share with (already shared or includes owner)")

        receipt = await self.ledger.batch_grant_access(
            owner_id, doc.ledger_document_id, [u.id for u in targets])

        outcome = BatchOutcome(document=doc, receipt=receipt, total_requested=len(emails))
        for user in targets:
            if doc.share_with(user.id, permission):
                outcome.shared.append((user, doc.share_entry(user.id)))
        doc.updated_at = utcnow()
        outcome.document = await self.store.save_document(doc)

        found_emails = {u.email.lower() for u in found}
        outcome.not_found = [e for e in requested if e not in found_emails]
        return outcome

    async def sharing_info(self, owner_id: str, document_id: str) -> SharingInfo:
        doc = await self._owned_document(document_id, owner_id, "view sharing details")
        try:
            accessors = await self.ledger.get_accessors(owner_id, doc.ledger_document_id)
        except LedgerError as e:
            logger.warning("Could not read ledger accessors for %s: %s", doc.id, e.message)
            accessors = []
        return SharingInfo(document=doc, accessors=accessors)

    # -- reads --------------------------------------------------------------

    async def _ledger_says(self, user_id: str, doc: Document) -> Optional[bool]:
        """Ledger verdict, or None if the ledger could not be asked."""
        try:
            return await self.ledger.has_access(user_id, doc.ledger_document_id)
        except LedgerError as e:
            logger.warning("Ledger access check failed for %s: %s", doc.id, e.message)
            return None

    async def check_access(self, user_id: str, document_id: str) -> AccessCheck:
        doc = await self.store.get_document(document_id)
        if doc is None or not doc.is_active:
            raise NotFoundError("Document not found")
        return AccessCheck(
            document=doc,
            database=doc.has_access(user_id),
            blockchain=bool(await self._ledger_says(user_id, doc)),
            permission=doc.get_user_permission(user_id),
        )

    async def download(self, user_id: str, document_id: str) -> DownloadOutcome:
        doc = await self._visible_document(document_id, user_id)

        verified = await self._ledger_says(user_id, doc)
        if not verified:
            if not self.development_mode:
                raise AuthorizationError("Access denied", detail="Blockchain access denied")
            logger.warning("Ledger did not confirm access to %s in development mode; allowing record access",
                           doc.id)

        key = doc.encryption_key if doc.is_encrypted else None
        data = await self.blob_store.download(doc.blob_hash, decrypt=key is not None, encryption_key=key)

        doc.record_download()
        doc = await self.store.save_document(doc)
        return DownloadOutcome(document=doc, data=data, ledger_verified=bool(verified))
