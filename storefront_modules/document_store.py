"""
Cloud document store interface.

Documents live under hierarchical slash-separated paths:

    stores/{store_id}
    stores/{store_id}/products/{product_id}
    stores/{store_id}/collections/{collection_id}

A collection path (odd number of segments) lists its documents; a document
path (even number of segments) addresses one document.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from .errors import NotFoundError
from .utils import generate_id

STORES = "stores"
DEFAULT_DOCUMENTS_TABLE = "storefront_documents"


def store_path(store_id):
    return f"{STORES}/{store_id}"


def products_path(store_id):
    return f"{STORES}/{store_id}/products"


def collections_path(store_id):
    return f"{STORES}/{store_id}/collections"


def split_document_path(path):
    """Split ``a/b/c/d`` into (``a/b/c``, ``d``)."""
    collection_path, _, doc_id = path.rstrip("/").rpartition("/")
    if not collection_path or not doc_id:
        raise ValueError(f"Not a document path: {path}")
    return collection_path, doc_id


class DocumentStore(ABC):
    """Async hierarchical document store (get/list/query/set/update/delete)."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the document at ``path`` or None."""

    @abstractmethod
    async def list(self, collection_path: str) -> List[Dict[str, Any]]:
        """Return every document in a collection. Each carries its ``id``."""

    @abstractmethod
    async def query(self, collection_path: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Return documents in a collection whose ``field`` equals ``value``."""

    @abstractmethod
    async def set(self, collection_path: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Create or replace a document. Returns its ID (assigned when ``doc_id`` is None)."""

    @abstractmethod
    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into an existing document. Raises NotFoundError if absent."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete one document. Deleting a missing document is not an error."""


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local DocumentStore.

    Used for tests and offline runs. Stored data is deep-copied on the way
    in and out so callers cannot mutate it behind the store's back.
    """

    def __init__(self, id_factory=generate_id):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.id_factory = id_factory

    async def get(self, path):
        collection_path, doc_id = split_document_path(path)
        doc = self._collections.get(collection_path, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def list(self, collection_path):
        docs = self._collections.get(collection_path.rstrip("/"), {})
        return [copy.deepcopy(d) for d in docs.values()]

    async def query(self, collection_path, field, value):
        return [d for d in await self.list(collection_path) if d.get(field) == value]

    async def set(self, collection_path, data, doc_id=None):
        doc_id = doc_id or self.id_factory()
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        self._collections.setdefault(collection_path.rstrip("/"), {})[doc_id] = doc
        logging.debug(f"Document set: {collection_path}/{doc_id}")
        return doc_id

    async def update(self, path, fields):
        collection_path, doc_id = split_document_path(path)
        doc = self._collections.get(collection_path, {}).get(doc_id)
        if doc is None:
            raise NotFoundError(f"No document at {path}")
        doc.update(copy.deepcopy(fields))
        logging.debug(f"Document updated: {path} ({', '.join(fields)})")

    async def delete(self, path):
        collection_path, doc_id = split_document_path(path)
        # Subcollections are not removed with their parent; callers delete children first
        self._collections.get(collection_path, {}).pop(doc_id, None)
        logging.debug(f"Document deleted: {path}")


class SupabaseDocumentStore(DocumentStore):
    """
    DocumentStore backed by one Supabase (Postgres) table.

    Each document is a row keyed by ``(collection, id)`` with its fields in a
    JSON column::

        create table storefront_documents (
            collection text not null,
            id text not null,
            data jsonb not null default '{}'::jsonb,
            primary key (collection, id)
        );

    The supabase client is synchronous, so every request runs in a worker
    thread.
    """

    def __init__(self, url: str, key: str, table: str = DEFAULT_DOCUMENTS_TABLE,
                 client: Optional[Client] = None, id_factory=generate_id):
        self.client: Client = client or create_client(url, key)
        self.table = table
        self.id_factory = id_factory

    @classmethod
    def from_config(cls, cfg):
        url = cfg.get("SUPABASE_URL", "").strip()
        key = cfg.get("SUPABASE_SERVICE_KEY", "").strip()
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be configured for the document store")
        return cls(url, key, cfg.get("SUPABASE_DOCUMENTS_TABLE") or DEFAULT_DOCUMENTS_TABLE)

    def _rows(self):
        return self.client.table(self.table)

    @staticmethod
    async def _execute(request) -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(request.execute)
        return response.data or []

    @staticmethod
    def _document(row):
        doc = dict(row.get("data") or {})
        doc["id"] = row["id"]
        return doc

    async def get(self, path):
        collection_path, doc_id = split_document_path(path)
        rows = await self._execute(
            self._rows().select("id, data").eq("collection", collection_path).eq("id", doc_id).limit(1)
        )
        return self._document(rows[0]) if rows else None

    async def list(self, collection_path):
        rows = await self._execute(
            self._rows().select("id, data").eq("collection", collection_path.rstrip("/"))
        )
        return [self._document(r) for r in rows]

    async def query(self, collection_path, field, value):
        rows = await self._execute(
            self._rows().select("id, data")
            .eq("collection", collection_path.rstrip("/"))
            .eq(f"data->>{field}", value)
        )
        return [self._document(r) for r in rows]

    async def set(self, collection_path, data, doc_id=None):
        doc_id = doc_id or self.id_factory()
        row = {
            "collection": collection_path.rstrip("/"),
            "id": doc_id,
            "data": {k: v for k, v in data.items() if k != "id"},
        }
        await self._execute(self._rows().upsert(row, on_conflict="collection,id"))
        logging.debug(f"Document set: {collection_path}/{doc_id}")
        return doc_id

    async def update(self, path, fields):
        doc = await self.get(path)
        if doc is None:
            raise NotFoundError(f"No document at {path}")

        collection_path, doc_id = split_document_path(path)
        doc.update(fields)
        doc.pop("id", None)
        await self._execute(
            self._rows().update({"data": doc}).eq("collection", collection_path).eq("id", doc_id)
        )
        logging.debug(f"Document updated: {path} ({', '.join(fields)})")

    async def delete(self, path):
        collection_path, doc_id = split_document_path(path)
        await self._execute(self._rows().delete().eq("collection", collection_path).eq("id", doc_id))
        logging.debug(f"Document deleted: {path}")


def document_store_from_config(cfg) -> Optional[DocumentStore]:
    """
    Build the cloud document store named by ``DOCUMENT_STORE``.

    Returns None (local-only persistence) when it is empty.

    Raises:
        ValueError: For an unknown backend or missing credentials
    """
    backend = (cfg.get("DOCUMENT_STORE") or "").strip().lower()
    if not backend:
        return None
    if backend == "supabase":
        return SupabaseDocumentStore.from_config(cfg)
    raise ValueError(f"Unknown DOCUMENT_STORE '{backend}'. Supported: supabase")
