# docshare/routes/views.py
from typing import Any, Dict, Iterable, List

from docshare.models import Document, ShareEntry
from docshare.storage import RecordStore


async def user_map(store: RecordStore, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """user id -> {id, name, email}; ids of vanished users map to {id} only."""
    out = {}
    for user_id in set(user_ids):
        user = await store.get_user(user_id)
        out[user_id] = user.brief() if user else {"id": user_id}
    return out


def share_view(entry: ShareEntry, users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "user": users.get(entry.user_id, {"id": entry.user_id}),
        "permissions": entry.permission.value,
        "sharedAt": entry.shared_at.isoformat(),
    }


async def document_views(store: RecordStore, docs: List[Document], detail: bool = False) -> List[Dict[str, Any]]:
    ids = [d.owner_id for d in docs] + [s.user_id for d in docs for s in d.shared_with]
    users = await user_map(store, ids)
    views = []
    for doc in docs:
        view = doc.detail() if detail else doc.summary()
        view["owner"] = users.get(doc.owner_id, {"id": doc.owner_id})
        view["sharedWith"] = [share_view(s, users) for s in doc.shared_with]
        views.append(view)
    return views
