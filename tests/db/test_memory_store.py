from __future__ import annotations

import asyncio

import pytest

from app.db.documents import DocumentExistsError
from app.db.memory_store import InMemoryDocumentStore


@pytest.mark.asyncio
async def test_create_get_and_duplicate_create() -> None:
    store = InMemoryDocumentStore()
    await store.create("sessions", "s1", {"phase": "waiting"})

    assert await store.get("sessions", "s1") == {"phase": "waiting"}
    assert await store.get("sessions", "missing") is None
    with pytest.raises(DocumentExistsError):
        await store.create("sessions", "s1", {"phase": "active"})


@pytest.mark.asyncio
async def test_documents_are_copied_in_and_out() -> None:
    store = InMemoryDocumentStore()
    data = {"tags": ["a"]}
    await store.create("sessions", "s1", data)
    data["tags"].append("b")

    loaded = await store.get("sessions", "s1")
    loaded["tags"].append("c")

    assert await store.get("sessions", "s1") == {"tags": ["a"]}


@pytest.mark.asyncio
async def test_update_none_mutator_is_a_no_op() -> None:
    store = InMemoryDocumentStore()
    await store.create("sessions", "s1", {"count": 1})
    subscription = store.subscribe("sessions", "s1")

    unchanged = await store.update("sessions", "s1", lambda current: None)
    updated = await store.update("sessions", "s1", lambda current: {"count": current["count"] + 1})

    assert unchanged == {"count": 1}
    assert updated == {"count": 2}
    change = await asyncio.wait_for(subscription.__anext__(), timeout=1)
    assert change.data == {"count": 2}
    await subscription.close()


@pytest.mark.asyncio
async def test_concurrent_updates_do_not_lose_writes() -> None:
    store = InMemoryDocumentStore()
    await store.create("counters", "c1", {"value": 0})

    await asyncio.gather(
        *(store.update("counters", "c1", lambda current: {"value": current["value"] + 1}) for _ in range(25))
    )

    assert await store.get("counters", "c1") == {"value": 25}


@pytest.mark.asyncio
async def test_update_missing_document_returns_none() -> None:
    store = InMemoryDocumentStore()
    assert await store.update("sessions", "missing", lambda current: current) is None


@pytest.mark.asyncio
async def test_collection_subscription_sees_create_and_delete() -> None:
    store = InMemoryDocumentStore()
    subscription = store.subscribe("sessions/s1/participants")

    await store.create("sessions/s1/participants", "p1", {"name": "Ana"})
    await store.create("sessions/s2/participants", "p2", {"name": "Ben"})
    assert await store.delete("sessions/s1/participants", "p1") is True
    assert await store.delete("sessions/s1/participants", "p1") is False
    await subscription.close()

    changes = [change async for change in subscription]
    assert [(change.doc_id, change.deleted) for change in changes] == [("p1", False), ("p1", True)]


@pytest.mark.asyncio
async def test_list_returns_collection_documents() -> None:
    store = InMemoryDocumentStore()
    await store.create("sessions", "s1", {"id": "s1"})
    await store.create("sessions", "s2", {"id": "s2"})

    assert sorted(document["id"] for document in await store.list("sessions")) == ["s1", "s2"]
    assert await store.list("empty") == []
    assert await store.ping() is True
