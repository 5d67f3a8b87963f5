from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

Document = dict[str, Any]
DocumentMutator = Callable[[Document | None], Document | None]


class DocumentStoreError(Exception):
    """Failure reported by the shared document store."""


class DocumentExistsError(DocumentStoreError):
    pass


class DocumentSerializationError(DocumentStoreError):
    pass


@dataclass(frozen=True, slots=True)
class DocumentChange:
    collection: str
    doc_id: str
    data: Document | None

    @property
    def deleted(self) -> bool:
        return self.data is None


class DocumentSubscription(Protocol):
    def __aiter__(self) -> DocumentSubscription: ...

    async def __anext__(self) -> DocumentChange: ...

    async def close(self) -> None: ...


class DocumentStore(Protocol):
    """Per-document atomic storage with change notifications.

    ``update`` runs ``mutator`` against the current document (``None`` when
    missing) as one atomic read-modify-write. Returning ``None`` from the
    mutator leaves the document untouched. No ordering or transactional
    guarantee is offered across different documents.
    """

    async def ping(self) -> bool: ...

    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    async def create(self, collection: str, doc_id: str, data: Document) -> None: ...

    async def update(
        self,
        collection: str,
        doc_id: str,
        mutator: DocumentMutator,
    ) -> Document | None: ...

    async def delete(self, collection: str, doc_id: str) -> bool: ...

    async def list(self, collection: str) -> list[Document]: ...

    def subscribe(self, collection: str, doc_id: str | None = None) -> DocumentSubscription: ...

    async def close(self) -> None: ...
