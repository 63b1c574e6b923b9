# docshare/routes/sharing.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from docshare.auth import get_current_user, get_reconciler, get_store
from docshare.errors import ValidationError
from docshare.models import User
from docshare.policies import validate_permission
from docshare.reconcile import AccessReconciler
from docshare.routes.views import share_view, user_map
from docshare.storage import RecordStore

router = APIRouter(prefix="/api/sharing", tags=["sharing"])


class GrantBody(BaseModel):
    documentId: Optional[str] = None
    userEmail: Optional[str] = None
    permissions: str = "read"


class RevokeBody(BaseModel):
    documentId: Optional[str] = None
    userId: Optional[str] = None


class BatchGrantBody(BaseModel):
    documentId: Optional[str] = None
    userEmails: Optional[List[str]] = None
    permissions: str = "read"


@router.post("/grant")
async def grant(body: GrantBody, user: User = Depends(get_current_user),
                reconciler: AccessReconciler = Depends(get_reconciler)):
    if not body.documentId or not body.userEmail:
        raise ValidationError("Document ID and user email are required")
    permission = validate_permission(body.permissions)

    outcome = await reconciler.grant(user.id, body.documentId, body.userEmail, permission)
    sharing = {
        "documentId": body.documentId,
        "documentTitle": outcome.document.title,
        "sharedWith": outcome.target.brief(),
        "permissions": outcome.entry.permission.value,
        "sharedAt": outcome.entry.shared_at.isoformat(),
    }
    if outcome.updated:
        return {"message": "Document sharing permissions updated successfully", "sharing": sharing}
    return {
        "message": "Document shared successfully",
        "sharing": sharing,
        "blockchain": {
            "transactionHash": outcome.receipt.transaction_hash,
            "blockNumber": outcome.receipt.block_number,
            "targetWalletAddress": outcome.receipt.target_wallet_address,
            "simulated": outcome.synthesized,
        },
    }


@router.post("/revoke")
async def revoke(body: RevokeBody, user: User = Depends(get_current_user),
                 reconciler: AccessReconciler = Depends(get_reconciler)):
    if not body.documentId or not body.userId:
        raise ValidationError("Document ID and user ID are required")

    outcome = await reconciler.revoke(user.id, body.documentId, body.userId)
    return {
        "message": "Document access revoked successfully",
        "revocation": {
            "documentId": body.documentId,
            "documentTitle": outcome.document.title,
            "revokedFrom": outcome.target.brief(),
            "revokedAt": outcome.revoked_at.isoformat(),
        },
        "blockchain": {
            "transactionHash": outcome.receipt.transaction_hash,
            "blockNumber": outcome.receipt.block_number,
            "targetWalletAddress": outcome.receipt.target_wallet_address,
        },
    }


@router.post("/batch-grant")
async def batch_grant(body: BatchGrantBody, user: User = Depends(get_current_user),
                      reconciler: AccessReconciler = Depends(get_reconciler)):
    if not body.documentId or not body.userEmails:
        raise ValidationError("Document ID and array of user emails are required")
    permission = validate_permission(body.permissions)

    outcome = await reconciler.batch_grant(user.id, body.documentId, body.userEmails, permission)
    return {
        "message": f"Document shared with {len(outcome.shared)} users successfully",
        "sharing": {
            "documentId": body.documentId,
            "documentTitle": outcome.document.title,
            "successful": [
                {
                    "user": target.brief(),
                    "permissions": entry.permission.value,
                    "sharedAt": entry.shared_at.isoformat(),
                    "success": True,
                }
                for target, entry in outcome.shared
            ],
            "notFound": outcome.not_found,
            "totalRequested": outcome.total_requested,
            "totalShared": len(outcome.shared),
        },
        "blockchain": {
            "transactionHash": outcome.receipt.transaction_hash,
            "blockNumber": outcome.receipt.block_number,
            "targetAddresses": list(outcome.receipt.target_addresses),
        },
    }


@router.get("/document/{document_id}")
async def sharing_info(document_id: str, user: User = Depends(get_current_user),
                       reconciler: AccessReconciler = Depends(get_reconciler),
                       store: RecordStore = Depends(get_store)):
    info = await reconciler.sharing_info(user.id, document_id)
    doc = info.document
    users = await user_map(store, [doc.owner_id] + [s.user_id for s in doc.shared_with])
    return {
        "document": {
            "id": doc.id,
            "title": doc.title,
            "owner": users[doc.owner_id],
            "createdAt": doc.created_at.isoformat(),
            "blockchainDocumentId": doc.ledger_document_id,
        },
        "sharedWith": [share_view(s, users) for s in doc.shared_with],
        "blockchainAccessors": info.accessors,
        "stats": {
            "totalShares": len(doc.shared_with),
            "downloadCount": doc.download_count,
            "lastAccessedAt": doc.last_accessed_at.isoformat(),
        },
    }


@router.get("/access/{document_id}")
async def check_access(document_id: str, user: User = Depends(get_current_user),
                       reconciler: AccessReconciler = Depends(get_reconciler)):
    check = await reconciler.check_access(user.id, document_id)
    doc = check.document
    return {
        "hasAccess": check.has_access,
        "permission": check.permission,
        "document": {
            "id": doc.id,
            "title": doc.title,
            "owner": doc.owner_id,
            "isOwner": doc.is_owner(user.id),
        },
        "verification": {
            "database": check.database,
            "blockchain": check.blockchain,
        },
    }


@router.get("/my-shares")
async def my_shares(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    user: User = Depends(get_current_user), store: RecordStore = Depends(get_store)):
    result = await store.list_my_shares(user.id, page=page, limit=limit)
    users = await user_map(store, [s.user_id for d in result.items for s in d.shared_with])
    return {
        "sharingActivity": [
            {
                "document": {
                    "id": doc.id,
                    "title": doc.title,
                    "originalName": doc.original_name,
                    "createdAt": doc.created_at.isoformat(),
                },
                "sharedWith": [share_view(s, users) for s in doc.shared_with],
                "totalShares": len(doc.shared_with),
            }
            for doc in result.items
        ],
        "pagination": result.pagination(),
    }
