from __future__ import annotations

import asyncio
import copy

from app.db.documents import (
    Document,
    DocumentChange,
    DocumentExistsError,
    DocumentMutator,
)

_CLOSED = object()


class InMemorySubscription:
    def __init__(self, store: InMemoryDocumentStore, collection: str, doc_id: str | None) -> None:
        self._store = store
        self.collection = collection
        self.doc_id = doc_id
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    def matches(self, change: DocumentChange) -> bool:
        if change.collection != self.collection:
            return False
        return self.doc_id is None or change.doc_id == self.doc_id

    def push(self, change: DocumentChange) -> None:
        if not self._closed:
            self._queue.put_nowait(change)

    def __aiter__(self) -> InMemorySubscription:
        return self

    async def __anext__(self) -> DocumentChange:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        assert isinstance(item, DocumentChange)
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._detach(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryDocumentStore:
    """Process-local store; documents are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = asyncio.Lock()
        self._subscriptions: list[InMemorySubscription] = []

    async def ping(self) -> bool:
        return True

    async def get(self, collection: str, doc_id: str) -> Document | None:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def create(self, collection: str, doc_id: str, data: Document) -> None:
        async with self._lock:
            documents = self._collections.setdefault(collection, {})
            if doc_id in documents:
                raise DocumentExistsError(f"{collection}/{doc_id} already exists")
            documents[doc_id] = copy.deepcopy(data)
            self._publish(collection, doc_id, documents[doc_id])

    async def update(
        self,
        collection: str,
        doc_id: str,
        mutator: DocumentMutator,
    ) -> Document | None:
        async with self._lock:
            documents = self._collections.setdefault(collection, {})
            current = documents.get(doc_id)
            updated = mutator(copy.deepcopy(current) if current is not None else None)
            if updated is None:
                return copy.deepcopy(current) if current is not None else None
            documents[doc_id] = copy.deepcopy(updated)
            self._publish(collection, doc_id, documents[doc_id])
            return copy.deepcopy(updated)

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
            if removed is None:
                return False
            self._publish(collection, doc_id, None)
            return True

    async def list(self, collection: str) -> list[Document]:
        return [copy.deepcopy(document) for document in self._collections.get(collection, {}).values()]

    def subscribe(self, collection: str, doc_id: str | None = None) -> InMemorySubscription:
        subscription = InMemorySubscription(self, collection, doc_id)
        self._subscriptions.append(subscription)
        return subscription

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()

    def _detach(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _publish(self, collection: str, doc_id: str, data: Document | None) -> None:
        change = DocumentChange(
            collection=collection,
            doc_id=doc_id,
            data=copy.deepcopy(data) if data is not None else None,
        )
        for subscription in self._subscriptions:
            if subscription.matches(change):
                subscription.push(change)
