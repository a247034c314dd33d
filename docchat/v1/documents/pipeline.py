"""
Local document pipeline: text extraction, chunking and the chunk index.

PDF parsing and embedding are handled by external collaborators registered
under their own pipeline names; the local pipeline covers plain text and
CSV so the engine can run end to end without them.
"""

import asyncio
import csv
import json
from io import StringIO
from pathlib import Path
from typing import Any
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.v1.documents.models import Document, DocumentChunk

PDF_MIME_TYPE = "application/pdf"
CSV_MIME_TYPES = ("text/csv", "application/csv", "application/vnd.ms-excel")


class DocumentPipelineError(Exception):
    """Raised when a document cannot be read by the configured pipeline."""


def chunk_text(
    text: str, chunk_size: int = 900, overlap: int = 200, max_chunks: int = 40
) -> list[str]:
    """
    Split text into overlapping windows.

    Each window is chunk_size characters long and starts overlap characters
    before the end of the previous one. Whitespace-only windows are dropped
    and at most max_chunks are returned.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    chunks: list[str] = []
    start = 0
    while start < len(text) and len(chunks) < max_chunks:
        end = min(start + chunk_size, len(text))
        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
        if end == len(text):
            break
        start = end - overlap
    return chunks


def clamp_text(text: str, max_chars: int) -> str:
    return text[:max_chars]


def csv_to_text(content: str) -> str:
    """Render CSV records as `Row n: {...}` lines, one per non-empty row."""
    reader = csv.DictReader(StringIO(content))
    lines = []
    for row in reader:
        if not any((value or "").strip() for value in row.values()):
            continue
        lines.append(f"Row {len(lines) + 1}: {json.dumps(row, ensure_ascii=False)}")
    return "\n".join(lines)


class LocalDocumentPipeline:
    """Reads files from local disk and stores chunks as DocumentChunk rows."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def extract_text(self, document: Document) -> str:
        if document.file_type == PDF_MIME_TYPE:
            raise DocumentPipelineError(
                "PDF extraction is not available in the local pipeline"
            )

        path = Path(document.file_path)
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentPipelineError(f"Cannot read {path.name}: {e}") from e

        if document.file_type in CSV_MIME_TYPES or path.suffix.lower() == ".csv":
            try:
                content = csv_to_text(content)
            except csv.Error as e:
                raise DocumentPipelineError(f"Invalid CSV: {e}") from e

        return clamp_text(content, self.settings.max_doc_chars)

    async def delete_index(
        self, session: AsyncSession, document_id: UUID, user_id: UUID, rag_type: str
    ) -> None:
        await session.execute(
            delete(DocumentChunk).where(
                DocumentChunk.document_id == document_id,
                DocumentChunk.user_id == user_id,
                DocumentChunk.rag_type == rag_type,
            )
        )

    async def upsert_index(
        self,
        session: AsyncSession,
        document_id: UUID,
        user_id: UUID,
        rag_type: str,
        chunks: list[str],
    ) -> int:
        session.add_all(
            DocumentChunk(
                document_id=document_id,
                user_id=user_id,
                rag_type=rag_type,
                chunk_index=index,
                content=content,
            )
            for index, content in enumerate(chunks)
        )
        await session.flush()
        return len(chunks)


def chunks_for(settings: Settings, text: str) -> list[str]:
    return chunk_text(
        text,
        chunk_size=settings.chunk_size,
        overlap=settings.chunk_overlap,
        max_chunks=settings.max_chunks,
    )


def describe_document(document: Document) -> dict[str, Any]:
    return {
        "document_id": str(document.id),
        "rag_type": document.rag_type,
        "file_type": document.file_type,
    }
