"""Redis-backed document store.

Documents live as JSON strings under ``doc:{doc_id}``.  Transactions use
WATCH/MULTI so a commit fails with ``ConflictRetry`` if any watched key
changed.  Indexed table fields are mirrored into sorted sets and every
commit publishes the new document on ``doc:{doc_id}`` for subscribers.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from kcpoker.errors import ConflictRetry
from kcpoker.store import (
    INDEXED_FIELDS,
    Callback,
    Document,
    DocumentStore,
    Transaction,
    Unsubscribe,
    collection_of,
)

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_pool: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    global _pool
    if _pool is None:
        _pool = redis.from_url(REDIS_URL, decode_responses=True)
    return _pool


def _doc_key(doc_id: str) -> str:
    return f"doc:{doc_id}"


def _channel(doc_id: str) -> str:
    return f"doc:{doc_id}"


def _index_key(collection: str, field: str) -> str:
    return f"idx:{collection}:{field}"


class _RedisTransaction(Transaction):
    def __init__(self, pipe: Any) -> None:
        super().__init__()
        self._pipe = pipe

    async def _load(self, doc_id: str) -> Optional[Document]:
        key = _doc_key(doc_id)
        await self._pipe.watch(key)
        raw = await self._pipe.get(key)
        if raw is None:
            return None
        return json.loads(raw)


class RedisStore(DocumentStore):
    """DocumentStore over a shared redis.asyncio connection pool."""

    async def get(self, doc_id: str) -> Optional[Document]:
        r = await get_redis()
        raw = await r.get(_doc_key(doc_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[Any]]) -> Any:
        r = await get_redis()
        async with r.pipeline(transaction=True) as pipe:
            txn = _RedisTransaction(pipe)
            result = await fn(txn)
            pipe.multi()
            for doc_id, data in txn.writes.items():
                self._queue_write(pipe, doc_id, data)
            try:
                await pipe.execute()
            except redis.WatchError:
                raise ConflictRetry("Document changed during transaction")
        return result

    def _queue_write(self, pipe: Any, doc_id: str, data: Optional[Document]) -> None:
        key = _doc_key(doc_id)
        fields = INDEXED_FIELDS.get(collection_of(doc_id), ())
        if data is None:
            pipe.delete(key)
            for field in fields:
                pipe.zrem(_index_key(collection_of(doc_id), field), doc_id)
            pipe.publish(_channel(doc_id), "null")
            return

        payload = json.dumps(data)
        pipe.set(key, payload)
        for field in fields:
            index = _index_key(collection_of(doc_id), field)
            value = data.get(field)
            if value is None:
                pipe.zrem(index, doc_id)
            else:
                pipe.zadd(index, {doc_id: float(value)})
        pipe.publish(_channel(doc_id), payload)

    async def subscribe(self, doc_id: str, callback: Callback) -> Unsubscribe:
        r = await get_redis()
        pubsub = r.pubsub()
        await pubsub.subscribe(_channel(doc_id))

        async def _reader() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    await callback(doc_id, json.loads(message["data"]))
                except Exception:
                    logger.exception("Subscriber for %s failed", doc_id)

        task = asyncio.create_task(_reader())

        async def unsubscribe() -> None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            await pubsub.unsubscribe(_channel(doc_id))
            await pubsub.aclose()

        return unsubscribe

    async def query(
        self,
        collection: str,
        field: str,
        lt: float,
        limit: Optional[int] = None,
    ) -> list[tuple[str, Document]]:
        r = await get_redis()
        if limit is not None:
            doc_ids = await r.zrangebyscore(
                _index_key(collection, field), "-inf", f"({lt}", start=0, num=limit
            )
        else:
            doc_ids = await r.zrangebyscore(_index_key(collection, field), "-inf", f"({lt}")
        if not doc_ids:
            return []
        raws = await r.mget([_doc_key(d) for d in doc_ids])
        return [(d, json.loads(raw)) for d, raw in zip(doc_ids, raws) if raw is not None]

    async def close(self) -> None:
        global _pool
        if _pool is not None:
            await _pool.aclose()
            _pool = None
