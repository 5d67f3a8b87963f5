from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import TypeVar

import structlog

from app.core.config import get_settings
from app.db.documents import DocumentStore, DocumentStoreError
from app.db.memory_store import InMemoryDocumentStore
from app.db.redis_store import RedisDocumentStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

STORE_BACKEND_MEMORY = "memory"
STORE_BACKEND_REDIS = "redis"


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    settings = get_settings()
    backend = settings.document_store_backend.strip().lower()
    if backend == STORE_BACKEND_REDIS:
        return RedisDocumentStore.from_url(settings.redis_url)
    if backend == STORE_BACKEND_MEMORY:
        return InMemoryDocumentStore()
    raise ValueError(f"unknown document store backend: {settings.document_store_backend}")


async def read_with_retry(
    read: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Retry display-feeding reads; the last failure is re-raised."""
    settings = get_settings()
    resolved_attempts = max(1, int(attempts if attempts is not None else settings.store_read_retry_attempts))
    resolved_backoff = max(
        0.0,
        float(backoff_seconds if backoff_seconds is not None else settings.store_read_retry_backoff_seconds),
    )
    attempt = 1
    while True:
        try:
            return await read()
        except DocumentStoreError as exc:
            if attempt >= resolved_attempts:
                raise
            logger.info("document_read_retry", attempt=attempt, error=str(exc))
            await asyncio.sleep(resolved_backoff * attempt)
            attempt += 1


async def dispose_document_store() -> None:
    """Close a loop-bound store client so the next event loop gets a fresh one."""
    if get_document_store.cache_info().currsize == 0:
        return
    store = get_document_store()
    if isinstance(store, InMemoryDocumentStore):
        # Process-local documents must outlive the loop.
        return
    get_document_store.cache_clear()
    await store.close()
