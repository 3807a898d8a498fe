"""
Repository for embedded knowledge chunks.
"""

from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.orm import Session

from job_relay.entities.knowledge_chunk import KnowledgeChunk
from job_relay.repositories.base_repo import BaseRepository


class KnowledgeChunkRepository(BaseRepository[KnowledgeChunk]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=KnowledgeChunk)

    def replace_for_source(
        self, source_id: str, chunks: list[KnowledgeChunk], *, commit: bool = True
    ) -> int:
        """Delete a source's chunks and insert *chunks* in their place."""
        self.session.execute(delete(KnowledgeChunk).where(KnowledgeChunk.source_id == source_id))
        self.session.add_all(chunks)
        if commit:
            self.session.commit()
        return len(chunks)

    def list_for_source(self, source_id: str) -> list[KnowledgeChunk]:
        return self.find(
            KnowledgeChunk.source_id == source_id,
            order_by=[KnowledgeChunk.chunk_index],
            limit=None,
        )
