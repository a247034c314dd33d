"""
Document processing job handlers.

One handler per RAG type: extract text, rebuild the document's index, mark
it ready and publish the completion event. Marking ready and publishing
happen in the same transaction, so a re-run after a crash either finds the
document ready (and skips) or redoes both.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.v1.core.exceptions import NonRetryableJobError
from docchat.v1.core.registries import DocumentPipeline, pipeline_registry
from docchat.v1.documents.models import Document, DocumentStatus, RagType
from docchat.v1.documents.pipeline import PDF_MIME_TYPE, chunks_for, describe_document
from docchat.v1.events.service import EventService
from docchat.v1.infra.jobs.payloads import parse_payload_uuid

logger = logging.getLogger(__name__)


class ProcessDocumentHandler:
    """
    Job handler for `process-support-doc`, `process-resume` and
    `process-expense-csv`.

    Payload expected:
    {
        "document_id": "uuid-string"
    }
    """

    def __init__(
        self,
        settings: Settings,
        rag_type: RagType,
        event_type: str,
        pipeline: DocumentPipeline | None = None,
    ):
        self.settings = settings
        self.rag_type = rag_type
        self.event_type = event_type
        self._pipeline = pipeline
        self.event_service = EventService(settings)

    @property
    def pipeline(self) -> DocumentPipeline:
        if self._pipeline is None:
            self._pipeline = pipeline_registry.get(self.settings.document_pipeline)
        return self._pipeline

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        document_id = parse_payload_uuid(payload, "document_id")

        result = await session.execute(
            select(Document)
            .where(Document.id == document_id)
            .execution_options(populate_existing=True)
        )
        document = result.scalar_one_or_none()

        if document is None:
            logger.warning(
                "Document not found for processing",
                extra={"document_id": str(document_id)},
            )
            return {"status": "skipped", "reason": "document_not_found"}

        if document.rag_type != self.rag_type.value:
            raise NonRetryableJobError(
                f"Document {document_id} is {document.rag_type}, "
                f"expected {self.rag_type.value}"
            )

        if document.status == DocumentStatus.READY.value:
            return {"status": "skipped", "reason": "already_ready"}

        await self._set_status(session, document, DocumentStatus.PROCESSING)
        logger.info("Processing document", extra=describe_document(document))

        max_mb = self.settings.pdf_max_buffer_mb
        if (
            document.file_type == PDF_MIME_TYPE
            and document.file_size > max_mb * 1024 * 1024
        ):
            return await self._fail(session, document, f"PDF too large (max {max_mb}MB)")

        try:
            text = await self.pipeline.extract_text(document)

            if not text.strip():
                return await self._fail(
                    session, document, "No text extracted from document"
                )

            chunks = chunks_for(self.settings, text)
            await self.pipeline.delete_index(
                session, document.id, document.user_id, document.rag_type
            )
            stored = await self.pipeline.upsert_index(
                session, document.id, document.user_id, document.rag_type, chunks
            )

            document.status = DocumentStatus.READY.value
            document.error_message = None
            document.updated_at = datetime.now(UTC)
            await self.event_service.publish_event(
                session,
                self.event_type,
                {"document_id": str(document.id), "rag_type": document.rag_type},
                user_id=document.user_id,
                commit=False,
            )
            await session.commit()

        except Exception as e:
            await session.rollback()
            await session.refresh(document)
            await self._fail(session, document, str(e) or e.__class__.__name__)
            raise

        logger.info(
            "Document ready",
            extra={"document_id": str(document.id), "chunks": stored},
        )
        return {"status": "ready", "chunks": stored}

    async def _set_status(
        self,
        session: AsyncSession,
        document: Document,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None:
        document.status = status.value
        document.error_message = error_message
        document.updated_at = datetime.now(UTC)
        await session.commit()

    async def _fail(
        self, session: AsyncSession, document: Document, error_message: str
    ) -> dict[str, Any]:
        await self._set_status(session, document, DocumentStatus.FAILED, error_message)
        logger.warning(
            "Document processing failed",
            extra={"document_id": str(document.id), "error": error_message},
        )
        return {"status": "failed", "reason": error_message}
