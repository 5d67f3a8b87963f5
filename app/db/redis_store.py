from __future__ import annotations

import json

import structlog
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError, WatchError

from app.db.documents import (
    Document,
    DocumentChange,
    DocumentExistsError,
    DocumentMutator,
    DocumentStoreError,
)

logger = structlog.get_logger(__name__)

DOCUMENT_KEY_PREFIX = "doc"
COLLECTION_INDEX_PREFIX = "col"
CHANGE_CHANNEL_PREFIX = "chg"
MAX_UPDATE_ATTEMPTS = 20


def document_key(collection: str, doc_id: str) -> str:
    return f"{DOCUMENT_KEY_PREFIX}:{collection}:{doc_id}"


def collection_key(collection: str) -> str:
    return f"{COLLECTION_INDEX_PREFIX}:{collection}"


def change_channel(collection: str) -> str:
    return f"{CHANGE_CHANNEL_PREFIX}:{collection}"


def encode_document(data: Document) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


def decode_document(raw: bytes | str | None) -> Document | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


def encode_change(doc_id: str, data: Document | None) -> str:
    return json.dumps({"id": doc_id, "data": data}, separators=(",", ":"), sort_keys=True)


def decode_change(collection: str, raw: bytes | str) -> DocumentChange:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    payload = json.loads(raw)
    return DocumentChange(collection=collection, doc_id=str(payload["id"]), data=payload.get("data"))


class RedisSubscription:
    def __init__(self, client: Redis, collection: str, doc_id: str | None) -> None:
        self._client = client
        self.collection = collection
        self.doc_id = doc_id
        self._pubsub: PubSub | None = None
        self._closed = False

    def __aiter__(self) -> RedisSubscription:
        return self

    async def __anext__(self) -> DocumentChange:
        if self._closed:
            raise StopAsyncIteration
        if self._pubsub is None:
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(change_channel(self.collection))
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                change = decode_change(self.collection, message["data"])
                if self.doc_id is not None and change.doc_id != self.doc_id:
                    continue
                return change
        except RedisError as exc:
            if self._closed:
                raise StopAsyncIteration from exc
            raise DocumentStoreError(str(exc)) from exc
        raise StopAsyncIteration

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()


class RedisDocumentStore:
    """JSON documents in Redis; updates use optimistic WATCH/MULTI transactions."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisDocumentStore:
        return cls(Redis.from_url(url))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise DocumentStoreError(str(exc)) from exc

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            raw = await self._client.get(document_key(collection, doc_id))
        except RedisError as exc:
            raise DocumentStoreError(str(exc)) from exc
        return decode_document(raw)

    async def create(self, collection: str, doc_id: str, data: Document) -> None:
        encoded = encode_document(data)
        try:
            created = await self._client.set(document_key(collection, doc_id), encoded, nx=True)
            if not created:
                raise DocumentExistsError(f"{collection}/{doc_id} already exists")
            await self._client.sadd(collection_key(collection), doc_id)
            await self._client.publish(change_channel(collection), encode_change(doc_id, data))
        except RedisError as exc:
            raise DocumentStoreError(str(exc)) from exc

    async def update(
        self,
        collection: str,
        doc_id: str,
        mutator: DocumentMutator,
    ) -> Document | None:
        key = document_key(collection, doc_id)
        try:
            for _ in range(MAX_UPDATE_ATTEMPTS):
                async with self._client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        current = decode_document(await pipe.get(key))
                        updated = mutator(current)
                        if updated is None:
                            await pipe.unwatch()
                            return current
                        pipe.multi()
                        pipe.set(key, encode_document(updated))
                        pipe.sadd(collection_key(collection), doc_id)
                        pipe.publish(change_channel(collection), encode_change(doc_id, updated))
                        await pipe.execute()
                        return updated
                    except WatchError:
                        logger.debug("document_update_conflict_retry", collection=collection, doc_id=doc_id)
                        continue
        except RedisError as exc:
            raise DocumentStoreError(str(exc)) from exc
        raise DocumentStoreError(f"{collection}/{doc_id} update kept conflicting")

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            removed = await self._client.delete(document_key(collection, doc_id))
            await self._client.srem(collection_key(collection), doc_id)
            if removed:
                await self._client.publish(change_channel(collection), encode_change(doc_id, None))
        except RedisError as exc:
            raise DocumentStoreError(str(exc)) from exc
        return bool(removed)

    async def list(self, collection: str) -> list[Document]:
        try:
            doc_ids = sorted(
                member.decode("utf-8") if isinstance(member, bytes) else str(member)
                for member in await self._client.smembers(collection_key(collection))
            )
            if not doc_ids:
                return []
            raw_documents = await self._client.mget(
                [document_key(collection, doc_id) for doc_id in doc_ids]
            )
        except RedisError as exc:
            raise DocumentStoreError(str(exc)) from exc
        documents: list[Document] = []
        for raw in raw_documents:
            document = decode_document(raw)
            if document is not None:
                documents.append(document)
        return documents

    def subscribe(self, collection: str, doc_id: str | None = None) -> RedisSubscription:
        return RedisSubscription(self._client, collection, doc_id)

    async def close(self) -> None:
        await self._client.aclose()
