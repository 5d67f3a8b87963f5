from __future__ import annotations

from collections.abc import Callable

from app.db.documents import Document, DocumentStore, DocumentSubscription
from app.db.models.live_participants import ParticipantDocument
from app.db.serialization import dump_document, load_document

ParticipantMutator = Callable[[ParticipantDocument], ParticipantDocument | None]


def participants_collection(session_id: str) -> str:
    return f"sessions/{session_id}/participants"


class LiveParticipantsRepo:
    @staticmethod
    async def create(store: DocumentStore, *, participant: ParticipantDocument) -> ParticipantDocument:
        await store.create(
            participants_collection(participant.session_id),
            participant.id,
            dump_document(participant),
        )
        return participant

    @staticmethod
    async def get_by_id(
        store: DocumentStore,
        *,
        session_id: str,
        participant_id: str,
    ) -> ParticipantDocument | None:
        raw = await store.get(participants_collection(session_id), participant_id)
        return load_document(ParticipantDocument, raw)

    @staticmethod
    async def list_for_session(store: DocumentStore, session_id: str) -> list[ParticipantDocument]:
        participants = [
            participant
            for participant in (
                load_document(ParticipantDocument, raw)
                for raw in await store.list(participants_collection(session_id))
            )
            if participant is not None
        ]
        participants.sort(key=lambda participant: (participant.joined_ms, participant.id))
        return participants

    @staticmethod
    async def update(
        store: DocumentStore,
        *,
        session_id: str,
        participant_id: str,
        mutate: ParticipantMutator,
    ) -> ParticipantDocument | None:
        def _mutator(raw: Document | None) -> Document | None:
            current = load_document(ParticipantDocument, raw)
            if current is None:
                return None
            updated = mutate(current)
            if updated is None:
                return None
            return dump_document(updated)

        raw = await store.update(participants_collection(session_id), participant_id, _mutator)
        return load_document(ParticipantDocument, raw)

    @staticmethod
    def subscribe_for_session(store: DocumentStore, session_id: str) -> DocumentSubscription:
        return store.subscribe(participants_collection(session_id))
