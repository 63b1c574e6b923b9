# docshare/storage.py
"""
Document record store: users, document metadata and sharing lists.

Two implementations of one async interface:
- MemoryRecordStore: process-local, used when DATABASE_URL is unset and in tests
- PostgresRecordStore: psycopg2, shared_with kept as a JSONB array

Neither locks across a read-modify-save cycle; concurrent saves of the same
document are last-write-wins on the whole record.
"""

import copy
import json
import logging
import math
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Generic, Iterable, List, Optional, TypeVar

import psycopg2
import psycopg2.errors
import psycopg2.extras
from fastapi.concurrency import run_in_threadpool

from docshare.errors import ConflictError
from docshare.models import Document, ShareEntry, User

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int

    def pagination(self) -> Dict[str, object]:
        pages = math.ceil(self.total / self.limit) if self.limit else 0
        return {
            "total": self.total,
            "page": self.page,
            "pages": pages,
            "hasNext": self.page < pages,
            "hasPrev": self.page > 1,
        }


def _matches(doc: Document, search: Optional[str]) -> bool:
    if not search or not search.strip():
        return True
    needle = search.strip().lower()
    return needle in doc.title.lower() or needle in doc.original_name.lower()


def _paginate(items: List[T], page: int, limit: int) -> Page[T]:
    start = (page - 1) * limit
    return Page(items=items[start:start + limit], total=len(items), page=page, limit=limit)


class RecordStore(ABC):
    async def startup(self) -> None:
        pass

    @abstractmethod
    async def create_user(self, user: User) -> User: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive, active users only."""

    @abstractmethod
    async def find_users_by_emails(self, emails: Iterable[str]) -> List[User]: ...

    @abstractmethod
    async def update_user(self, user: User) -> User: ...

    @abstractmethod
    async def search_users(self, query: str, exclude_id: Optional[str] = None, limit: int = 10) -> List[User]:
        """Active users whose email contains `query`, case-insensitive."""

    @abstractmethod
    async def create_document(self, doc: Document) -> Document: ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        """Returns inactive documents too; callers filter."""

    @abstractmethod
    async def find_document_by_blob_hash(self, blob_hash: str) -> Optional[Document]:
        """Any record, active or not, already holding this content address."""

    @abstractmethod
    async def save_document(self, doc: Document) -> Document: ...

    @abstractmethod
    async def list_owned(self, owner_id: str, page: int = 1, limit: int = 10,
                         search: Optional[str] = None) -> Page[Document]: ...

    @abstractmethod
    async def list_shared_with(self, user_id: str, page: int = 1, limit: int = 10,
                               search: Optional[str] = None) -> Page[Document]: ...

    @abstractmethod
    async def list_my_shares(self, owner_id: str, page: int = 1, limit: int = 10) -> Page[Document]: ...


class MemoryRecordStore(RecordStore):
    """Dict-backed store; hands out copies so unsaved edits never leak in."""

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._documents: Dict[str, Document] = {}

    async def create_user(self, user):
        if any(u.email.lower() == user.email.lower() for u in self._users.values()):
            raise ConflictError("User with this email already exists")
        self._users[user.id] = copy.deepcopy(user)
        return copy.deepcopy(user)

    async def get_user(self, user_id):
        user = self._users.get(str(user_id))
        return copy.deepcopy(user) if user else None

    async def find_user_by_email(self, email):
        email = email.strip().lower()
        for user in self._users.values():
            if user.is_active and user.email.lower() == email:
                return copy.deepcopy(user)
        return None

    async def find_users_by_emails(self, emails):
        wanted = {e.strip().lower() for e in emails}
        return [copy.deepcopy(u) for u in self._users.values()
                if u.is_active and u.email.lower() in wanted]

    async def update_user(self, user):
        self._users[user.id] = copy.deepcopy(user)
        return copy.deepcopy(user)

    async def search_users(self, query, exclude_id=None, limit=10):
        needle = query.strip().lower()
        found = [u for u in self._users.values()
                 if u.is_active and u.id != exclude_id
                 and needle in u.email.lower()]
        return [copy.deepcopy(u) for u in sorted(found, key=lambda u: u.name)[:limit]]

    async def create_document(self, doc):
        for existing in self._documents.values():
            if existing.blob_hash == doc.blob_hash:
                raise ConflictError("A document with identical content already exists")
            if existing.ledger_document_id == doc.ledger_document_id:
                raise ConflictError("Ledger document id already in use")
        self._documents[doc.id] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def get_document(self, document_id):
        doc = self._documents.get(str(document_id))
        return copy.deepcopy(doc) if doc else None

    async def find_document_by_blob_hash(self, blob_hash):
        for doc in self._documents.values():
            if doc.blob_hash == blob_hash:
                return copy.deepcopy(doc)
        return None

    async def save_document(self, doc):
        stored = self._documents.get(doc.id)
        doc = copy.deepcopy(doc)
        if stored is not None and not stored.is_active:
            doc.is_active = False
        self._documents[doc.id] = doc
        return copy.deepcopy(doc)

    async def list_owned(self, owner_id, page=1, limit=10, search=None):
        docs = [d for d in self._documents.values()
                if d.owner_id == owner_id and d.is_active and _matches(d, search)]
        docs.sort(key=lambda d: d.created_at, reverse=True)
        return _paginate([copy.deepcopy(d) for d in docs], page, limit)

    async def list_shared_with(self, user_id, page=1, limit=10, search=None):
        docs = [d for d in self._documents.values()
                if d.is_active and d.share_entry(user_id) is not None and _matches(d, search)]
        docs.sort(key=lambda d: d.share_entry(user_id).shared_at, reverse=True)
        return _paginate([copy.deepcopy(d) for d in docs], page, limit)

    async def list_my_shares(self, owner_id, page=1, limit=10):
        docs = [d for d in self._documents.values()
                if d.owner_id == owner_id and d.is_active and d.is_shared]
        docs.sort(key=lambda d: d.updated_at, reverse=True)
        return _paginate([copy.deepcopy(d) for d in docs], page, limit)


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    wallet_address TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL,
    last_login_at TIMESTAMPTZ
);
CREATE UNIQUE INDEX IF NOT EXISTS users_email_lower_idx ON users (lower(email));

CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    original_name TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    size BIGINT NOT NULL CHECK (size >= 0),
    blob_hash TEXT NOT NULL UNIQUE,
    ledger_document_id TEXT NOT NULL UNIQUE,
    owner_id TEXT NOT NULL REFERENCES users(id),
    is_encrypted BOOLEAN NOT NULL DEFAULT FALSE,
    encryption_key TEXT,
    shared_with JSONB NOT NULL DEFAULT '[]'::jsonb,
    download_count INTEGER NOT NULL DEFAULT 0,
    last_accessed_at TIMESTAMPTZ NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS documents_owner_active_idx ON documents (owner_id, is_active);
CREATE INDEX IF NOT EXISTS documents_shared_with_idx ON documents USING GIN (shared_with jsonb_path_ops);
"""

USER_COLUMNS = "id, name, email, password_hash, wallet_address, is_active, created_at, last_login_at"
DOCUMENT_COLUMNS = (
    "id, title, description, original_name, mime_type, size, blob_hash, ledger_document_id, owner_id, "
    "is_encrypted, encryption_key, shared_with, download_count, last_accessed_at, is_active, created_at, updated_at"
)


def _user_from_row(row) -> User:
    return User(**dict(row))


def _document_from_row(row) -> Document:
    data = dict(row)
    shared = data.pop("shared_with") or []
    if isinstance(shared, str):
        shared = json.loads(shared)
    return Document(shared_with=[ShareEntry.from_dict(s) for s in shared], **data)


def _like(search: str) -> str:
    escaped = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PostgresRecordStore(RecordStore):
    def __init__(self, dsn: str):
        self.dsn = dsn

    @contextmanager
    def _cursor(self):
        cx = psycopg2.connect(self.dsn)
        try:
            with cx, cx.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                yield cur
        except psycopg2.errors.UniqueViolation as e:
            raise ConflictError("Record already exists", detail=str(e)) from e
        finally:
            cx.close()

    def _fetch_one(self, sql, params, factory):
        with self._cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
            return factory(row) if row else None

    def _fetch_all(self, sql, params, factory):
        with self._cursor() as cur:
            cur.execute(sql, params)
            return [factory(r) for r in cur.fetchall()]

    def _count(self, sql, params) -> int:
        with self._cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()["count"]

    def _execute(self, sql, params=None) -> None:
        with self._cursor() as cur:
            cur.execute(sql, params)

    async def startup(self):
        await run_in_threadpool(self._execute, SCHEMA)
        logger.info("Record store schema ensured")

    async def create_user(self, user):
        await run_in_threadpool(
            self._execute,
            f"INSERT INTO users ({USER_COLUMNS}) VALUES (%s,%s,%s,%s,%s,%s,%s,%s)",
            (user.id, user.name, user.email, user.password_hash, user.wallet_address,
             user.is_active, user.created_at, user.last_login_at),
        )
        return user

    async def get_user(self, user_id):
        return await run_in_threadpool(
            self._fetch_one, f"SELECT {USER_COLUMNS} FROM users WHERE id=%s", (str(user_id),), _user_from_row)

    async def find_user_by_email(self, email):
        return await run_in_threadpool(
            self._fetch_one,
            f"SELECT {USER_COLUMNS} FROM users WHERE lower(email)=%s AND is_active",
            (email.strip().lower(),), _user_from_row)

    async def find_users_by_emails(self, emails):
        wanted = list({e.strip().lower() for e in emails})
        return await run_in_threadpool(
            self._fetch_all,
            f"SELECT {USER_COLUMNS} FROM users WHERE lower(email) = ANY(%s) AND is_active",
            (wanted,), _user_from_row)

    async def update_user(self, user):
        await run_in_threadpool(
            self._execute,
            "UPDATE users SET name=%s, wallet_address=%s, is_active=%s, last_login_at=%s WHERE id=%s",
            (user.name, user.wallet_address, user.is_active, user.last_login_at, user.id),
        )
        return user

    async def search_users(self, query, exclude_id=None, limit=10):
        pattern = _like(query)
        return await run_in_threadpool(
            self._fetch_all,
            f"SELECT {USER_COLUMNS} FROM users WHERE is_active AND id <> %s "
            "AND email ILIKE %s ORDER BY name LIMIT %s",
            (exclude_id or "", pattern, limit), _user_from_row)

    async def create_document(self, doc):
        await run_in_threadpool(
            self._execute,
            f"INSERT INTO documents ({DOCUMENT_COLUMNS}) VALUES "
            "(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s::jsonb,%s,%s,%s,%s,%s)",
            (doc.id, doc.title, doc.description, doc.original_name, doc.mime_type, doc.size,
             doc.blob_hash, doc.ledger_document_id, doc.owner_id, doc.is_encrypted, doc.encryption_key,
             json.dumps([s.to_dict() for s in doc.shared_with]), doc.download_count,
             doc.last_accessed_at, doc.is_active, doc.created_at, doc.updated_at),
        )
        return doc

    async def get_document(self, document_id):
        return await run_in_threadpool(
            self._fetch_one, f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id=%s",
            (str(document_id),), _document_from_row)

    async def find_document_by_blob_hash(self, blob_hash):
        return await run_in_threadpool(
            self._fetch_one, f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE blob_hash=%s",
            (blob_hash,), _document_from_row)

    async def save_document(self, doc):
        # is_active only ever moves true -> false
        await run_in_threadpool(
            self._execute,
            "UPDATE documents SET title=%s, description=%s, shared_with=%s::jsonb, download_count=%s, "
            "last_accessed_at=%s, is_active=(is_active AND %s), updated_at=%s WHERE id=%s",
            (doc.title, doc.description, json.dumps([s.to_dict() for s in doc.shared_with]),
             doc.download_count, doc.last_accessed_at, doc.is_active, doc.updated_at, doc.id),
        )
        return doc

    async def _page(self, where: str, params: tuple, order: str, page: int, limit: int) -> Page[Document]:
        items = await run_in_threadpool(
            self._fetch_all,
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE {where} ORDER BY {order} LIMIT %s OFFSET %s",
            params + (limit, (page - 1) * limit), _document_from_row)
        total = await run_in_threadpool(self._count, f"SELECT count(*) FROM documents WHERE {where}", params)
        return Page(items=items, total=total, page=page, limit=limit)

    @staticmethod
    def _search_clause(where: str, params: tuple, search: Optional[str]):
        if search and search.strip():
            pattern = _like(search)
            return where + " AND (title ILIKE %s OR original_name ILIKE %s)", params + (pattern, pattern)
        return where, params

    async def list_owned(self, owner_id, page=1, limit=10, search=None):
        where, params = self._search_clause("owner_id=%s AND is_active", (owner_id,), search)
        return await self._page(where, params, "created_at DESC", page, limit)

    async def list_shared_with(self, user_id, page=1, limit=10, search=None):
        where, params = self._search_clause(
            "shared_with @> %s::jsonb AND is_active", (json.dumps([{"user": user_id}]),), search)
        return await self._page(where, params, "updated_at DESC", page, limit)

    async def list_my_shares(self, owner_id, page=1, limit=10):
        return await self._page(
            "owner_id=%s AND is_active AND jsonb_array_length(shared_with) > 0",
            (owner_id,), "updated_at DESC", page, limit)
