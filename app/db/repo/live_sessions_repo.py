from __future__ import annotations

from collections.abc import Callable

from app.db.documents import Document, DocumentExistsError, DocumentStore, DocumentSubscription
from app.db.models.live_sessions import JoinCodeDocument, SessionDocument
from app.db.serialization import dump_document, load_document

SESSIONS_COLLECTION = "sessions"
JOIN_CODES_COLLECTION = "join_codes"

SessionMutator = Callable[[SessionDocument], SessionDocument | None]


class LiveSessionsRepo:
    @staticmethod
    async def create(store: DocumentStore, *, session: SessionDocument) -> SessionDocument:
        await store.create(SESSIONS_COLLECTION, session.id, dump_document(session))
        return session

    @staticmethod
    async def get_by_id(store: DocumentStore, session_id: str) -> SessionDocument | None:
        raw = await store.get(SESSIONS_COLLECTION, session_id)
        return load_document(SessionDocument, raw)

    @staticmethod
    async def reserve_code(store: DocumentStore, *, code: str, session_id: str) -> bool:
        try:
            await store.create(
                JOIN_CODES_COLLECTION,
                code,
                dump_document(JoinCodeDocument(code=code, session_id=session_id)),
            )
        except DocumentExistsError:
            return False
        return True

    @staticmethod
    async def get_by_code(store: DocumentStore, code: str) -> SessionDocument | None:
        raw_code = await store.get(JOIN_CODES_COLLECTION, code.strip().upper())
        join_code = load_document(JoinCodeDocument, raw_code)
        if join_code is None:
            return None
        return await LiveSessionsRepo.get_by_id(store, join_code.session_id)

    @staticmethod
    async def update(
        store: DocumentStore,
        session_id: str,
        mutate: SessionMutator,
    ) -> SessionDocument | None:
        """Atomic read-modify-write; ``mutate`` returning ``None`` is a no-op."""

        def _mutator(raw: Document | None) -> Document | None:
            current = load_document(SessionDocument, raw)
            if current is None:
                return None
            updated = mutate(current)
            if updated is None:
                return None
            return dump_document(updated)

        raw = await store.update(SESSIONS_COLLECTION, session_id, _mutator)
        return load_document(SessionDocument, raw)

    @staticmethod
    async def list_by_phases(
        store: DocumentStore,
        *,
        phases: frozenset[str],
        limit: int,
    ) -> list[SessionDocument]:
        sessions: list[SessionDocument] = []
        for raw in await store.list(SESSIONS_COLLECTION):
            session = load_document(SessionDocument, raw)
            if session is not None and session.phase in phases:
                sessions.append(session)
        sessions.sort(key=lambda session: (session.created_ms, session.id))
        return sessions[: max(1, int(limit))]

    @staticmethod
    def subscribe(store: DocumentStore, session_id: str) -> DocumentSubscription:
        return store.subscribe(SESSIONS_COLLECTION, session_id)
