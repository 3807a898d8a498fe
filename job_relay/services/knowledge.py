"""
Embedding ingestion: chunk -> embed -> replace the source's chunks.

Re-ingesting a source deletes its previous chunks first, so running it
twice for the same asset or deliverable is safe.
"""

from __future__ import annotations

import logging
from typing import Protocol

from langchain_text_splitters import RecursiveCharacterTextSplitter
from openai import OpenAI
from sqlalchemy.orm import Session

from job_relay.entities.knowledge_chunk import KnowledgeChunk
from job_relay.repositories.knowledge_repo import KnowledgeChunkRepository

logger = logging.getLogger(__name__)

# ~1500 chars per chunk; overlap keeps context across boundaries
DEFAULT_CHUNK_SIZE = 1500
DEFAULT_CHUNK_OVERLAP = 150


class KnowledgeIngestor(Protocol):
    def ingest(
        self,
        session: Session,
        *,
        contract_id: str | None,
        source_type: str,
        source_id: str,
        title: str,
        content: str,
    ) -> int:
        """Embed *content* and store it; returns the number of chunks written."""
        ...


def chunk_text(
    text: str | None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into pieces of at most ~chunk_size characters.

    Paragraph breaks are preferred, then line breaks, sentences and words.
    """
    if not text or not text.strip():
        return []
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=["\n\n", "\n", ". ", " ", ""],
    )
    return [piece for piece in splitter.split_text(text) if piece.strip()]


class OpenAIKnowledgeIngestor:
    """Knowledge ingestor backed by the OpenAI embeddings API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        self._client = OpenAI(api_key=api_key)
        self._model = model
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    def embed(self, texts: list[str]) -> list[list[float]]:
        response = self._client.embeddings.create(model=self._model, input=texts)
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]

    def ingest(
        self,
        session: Session,
        *,
        contract_id: str | None,
        source_type: str,
        source_id: str,
        title: str,
        content: str,
    ) -> int:
        chunks = chunk_text(content, self._chunk_size, self._chunk_overlap)
        if not chunks:
            return 0

        embeddings = self.embed(chunks)
        rows = [
            KnowledgeChunk(
                contract_id=contract_id,
                source_type=source_type,
                source_id=source_id,
                title=title,
                chunk_index=i,
                content=chunk,
                embedding=embedding,
            )
            for i, (chunk, embedding) in enumerate(zip(chunks, embeddings))
        ]
        written = KnowledgeChunkRepository(session).replace_for_source(source_id, rows)
        logger.info("Inserted %d chunks for %r (%s %s)", written, title, source_type, source_id)
        return written
