"""Document store used for all persistent state.

Documents are JSON-compatible dicts addressed by slash-separated ids such as
``tables/ABC234`` or ``wallets/{uid}``.  Every mutation runs inside
``run_transaction``: reads are tracked, writes are buffered and applied
atomically on commit.  A commit that raced another writer raises
``ConflictRetry``; callers decide whether to retry.

Two backends exist: ``MemoryStore`` (tests, local play) and ``RedisStore``
in ``kcpoker.redis_client``.  ``get_store()`` picks one from ``REDIS_URL``.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from typing import Any, Awaitable, Callable, Optional

from kcpoker.errors import ConflictRetry

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Callback = Callable[[str, Optional[Document]], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]

# Fields kept in a sorted index so the scheduler and cleaner can query them
INDEXED_FIELDS: dict[str, tuple[str, ...]] = {
    "tables": ("turn_deadline", "last_activity"),
}


def table_doc(table_id: str) -> str:
    return f"tables/{table_id}"


def wallet_doc(uid: str) -> str:
    return f"wallets/{uid}"


def hand_history_doc(hand_id: str) -> str:
    return f"hand_histories/{hand_id}"


def user_hand_log_doc(uid: str, hand_id: str) -> str:
    return f"users/{uid}/hand_logs/{hand_id}"


def collection_of(doc_id: str) -> str:
    return doc_id.split("/", 1)[0]


class Transaction:
    """Tracked reads and buffered writes for one attempt."""

    def __init__(self) -> None:
        self._writes: dict[str, Optional[Document]] = {}

    async def _load(self, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    async def get(self, doc_id: str) -> Optional[Document]:
        if doc_id in self._writes:
            data = self._writes[doc_id]
            return copy.deepcopy(data) if data is not None else None
        return await self._load(doc_id)

    def set(self, doc_id: str, data: Document) -> None:
        self._writes[doc_id] = copy.deepcopy(data)

    def delete(self, doc_id: str) -> None:
        self._writes[doc_id] = None

    @property
    def writes(self) -> dict[str, Optional[Document]]:
        return self._writes


class DocumentStore:
    """Interface shared by the memory and Redis backends."""

    async def get(self, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[Any]]) -> Any:
        """Run *fn* against a fresh transaction and commit its writes.

        Raises ConflictRetry if a document read by *fn* changed before commit.
        """
        raise NotImplementedError

    async def subscribe(self, doc_id: str, callback: Callback) -> Unsubscribe:
        """Call *callback(doc_id, data)* after every committed change."""
        raise NotImplementedError

    async def query(
        self,
        collection: str,
        field: str,
        lt: float,
        limit: Optional[int] = None,
    ) -> list[tuple[str, Document]]:
        """Documents in *collection* whose indexed *field* is below *lt*, ascending."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class _MemoryTransaction(Transaction):
    def __init__(self, store: MemoryStore) -> None:
        super().__init__()
        self._store = store
        self.read_versions: dict[str, int] = {}

    async def _load(self, doc_id: str) -> Optional[Document]:
        data, version = self._store._snapshot(doc_id)
        self.read_versions.setdefault(doc_id, version)
        return data


class MemoryStore(DocumentStore):
    """In-process store with optimistic version checks."""

    def __init__(self) -> None:
        self._docs: dict[str, Document] = {}
        self._versions: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._subscribers: dict[str, list[Callback]] = {}

    def _snapshot(self, doc_id: str) -> tuple[Optional[Document], int]:
        data = self._docs.get(doc_id)
        return (copy.deepcopy(data) if data is not None else None, self._versions.get(doc_id, 0))

    async def get(self, doc_id: str) -> Optional[Document]:
        return self._snapshot(doc_id)[0]

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[Any]]) -> Any:
        txn = _MemoryTransaction(self)
        result = await fn(txn)

        async with self._lock:
            for doc_id, version in txn.read_versions.items():
                if self._versions.get(doc_id, 0) != version:
                    raise ConflictRetry(f"{doc_id} changed during transaction")
            for doc_id, data in txn.writes.items():
                if data is None:
                    self._docs.pop(doc_id, None)
                else:
                    self._docs[doc_id] = data
                self._versions[doc_id] = self._versions.get(doc_id, 0) + 1

        for doc_id, data in txn.writes.items():
            await self._notify(doc_id, data)
        return result

    async def _notify(self, doc_id: str, data: Optional[Document]) -> None:
        for callback in list(self._subscribers.get(doc_id, [])):
            try:
                await callback(doc_id, copy.deepcopy(data) if data is not None else None)
            except Exception:
                logger.exception("Subscriber for %s failed", doc_id)

    async def subscribe(self, doc_id: str, callback: Callback) -> Unsubscribe:
        self._subscribers.setdefault(doc_id, []).append(callback)

        async def unsubscribe() -> None:
            callbacks = self._subscribers.get(doc_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(doc_id, None)

        return unsubscribe

    async def query(
        self,
        collection: str,
        field: str,
        lt: float,
        limit: Optional[int] = None,
    ) -> list[tuple[str, Document]]:
        prefix = f"{collection}/"
        matches = [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._docs.items()
            if doc_id.startswith(prefix)
            and "/" not in doc_id[len(prefix):]
            and data.get(field) is not None
            and data[field] < lt
        ]
        matches.sort(key=lambda item: item[1][field])
        return matches[:limit] if limit is not None else matches


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """Process-wide store chosen from REDIS_URL (``memory://`` for in-process)."""
    global _store
    if _store is None:
        url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        if url.startswith("memory://"):
            _store = MemoryStore()
        else:
            from kcpoker.redis_client import RedisStore

            _store = RedisStore()
        logger.info("Using %s", type(_store).__name__)
    return _store


def set_store(store: Optional[DocumentStore]) -> None:
    global _store
    _store = store


async def close() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
