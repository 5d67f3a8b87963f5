from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from app.db.store import dispose_document_store

T = TypeVar("T")


async def _run_with_fresh_store(awaitable: Awaitable[T]) -> T:
    await dispose_document_store()
    try:
        return await awaitable
    finally:
        await dispose_document_store()


def run_async_job(awaitable: Awaitable[T]) -> T:
    return asyncio.run(_run_with_fresh_store(awaitable))
