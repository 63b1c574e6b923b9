# docshare/routes/documents.py
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from pydantic import BaseModel

from docshare.auth import get_current_user, get_reconciler, get_store
from docshare.models import User
from docshare.policies import MAX_FILE_SIZE, validate_title, validate_upload
from docshare.reconcile import AccessReconciler
from docshare.routes.views import document_views
from docshare.storage import RecordStore

router = APIRouter(prefix="/api/documents", tags=["documents"])


class UpdateBody(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


def _truthy(value: Optional[str]) -> bool:
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload(
    document: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: str = Form(""),
    encrypt: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    reconciler: AccessReconciler = Depends(get_reconciler),
):
    """
    multipart/form-data: document (file), title, description, encrypt ("true"/"false")
    Stores the blob, registers it on the ledger, then records it.
    """
    if document is None:
        validate_upload(None, None, 0)
    # one byte past the cap is enough to know it is too large
    data = await document.read(MAX_FILE_SIZE + 1)
    validate_upload(document.filename, document.content_type, len(data))
    title = validate_title(title)

    outcome = await reconciler.upload(
        user, data,
        title=title,
        original_name=document.filename,
        mime_type=document.content_type,
        description=description,
        encrypt=_truthy(encrypt),
    )
    doc, reg = outcome.document, outcome.registration
    return {
        "message": "Document uploaded successfully",
        "document": {
            **doc.detail(),
            "owner": user.brief(),
        },
        "blockchain": {
            "transactionHash": reg.transaction_hash,
            "blockNumber": reg.block_number,
            "walletAddress": reg.wallet_address,
        },
    }


@router.get("/mine")
async def mine(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    result = await store.list_owned(user.id, page=page, limit=limit, search=search)
    return {
        "documents": await document_views(store, result.items),
        "pagination": result.pagination(),
    }


@router.get("/shared-with-me")
async def shared_with_me(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    result = await store.list_shared_with(user.id, page=page, limit=limit, search=search)
    views = await document_views(store, result.items)
    for doc, view in zip(result.items, views):
        entry = doc.share_entry(user.id)
        view.pop("sharedWith")
        view["sharedAt"] = entry.shared_at.isoformat()
        view["permissions"] = entry.permission.value
    return {"documents": views, "pagination": result.pagination()}


@router.get("/{document_id}")
async def get_document(document_id: str, user: User = Depends(get_current_user),
                       reconciler: AccessReconciler = Depends(get_reconciler),
                       store: RecordStore = Depends(get_store)):
    doc = await reconciler.get_document(user.id, document_id)
    view = (await document_views(store, [doc], detail=True))[0]
    view["userPermission"] = doc.get_user_permission(user.id)
    return {"document": view}


@router.get("/{document_id}/download")
async def download(document_id: str, user: User = Depends(get_current_user),
                   reconciler: AccessReconciler = Depends(get_reconciler)):
    outcome = await reconciler.download(user.id, document_id)
    doc = outcome.document
    return Response(
        content=outcome.data,
        media_type=doc.mime_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(doc.original_name)}",
            "Cache-Control": "no-cache",
        },
    )


@router.put("/{document_id}")
async def update_document(document_id: str, body: UpdateBody, user: User = Depends(get_current_user),
                          reconciler: AccessReconciler = Depends(get_reconciler)):
    doc = await reconciler.update_document(user.id, document_id, body.title, body.description)
    return {"message": "Document updated successfully", "document": doc.summary()}


@router.delete("/{document_id}")
async def delete_document(document_id: str, user: User = Depends(get_current_user),
                          reconciler: AccessReconciler = Depends(get_reconciler)):
    await reconciler.delete(user.id, document_id)
    return {"message": "Document deleted successfully"}
