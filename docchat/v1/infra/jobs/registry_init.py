"""
Job registry initialization.

Registers every job handler and the local document pipeline with the global
registries.
"""

import logging

from docchat.config.settings import Settings
from docchat.v1.core.registries import (
    DocumentPipelineRegistry,
    JobRegistry,
    job_registry,
    pipeline_registry,
)
from docchat.v1.documents.handlers import ProcessDocumentHandler
from docchat.v1.documents.models import RagType
from docchat.v1.documents.pipeline import LocalDocumentPipeline
from docchat.v1.events.models import EventType
from docchat.v1.infra.jobs.models import JobType
from docchat.v1.webhooks.delivery import WebhookDeliveryExecutor
from docchat.v1.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


def init_pipeline_registry(
    settings: Settings, registry: DocumentPipelineRegistry = pipeline_registry
) -> None:
    """Register the local pipeline and check the configured one exists."""
    if "local" not in registry.list():
        registry.register("local", LocalDocumentPipeline(settings))

    try:
        registry.get(settings.document_pipeline)
    except KeyError as e:
        raise RuntimeError(
            f"Configured document pipeline '{settings.document_pipeline}' not available. "
            f"Available pipelines: {registry.list()}"
        ) from e


def register_job_handlers(
    settings: Settings, registry: JobRegistry = job_registry
) -> None:
    """Register all job handlers with the job registry."""

    logger.info("Registering job handlers")

    init_pipeline_registry(settings)

    # Document processing
    registry.register(
        JobType.PROCESS_SUPPORT_DOC.value,
        ProcessDocumentHandler(settings, RagType.SUPPORT, EventType.DOCUMENT_PROCESSED),
    )
    registry.register(
        JobType.PROCESS_RESUME.value,
        ProcessDocumentHandler(
            settings, RagType.RESUME, EventType.RESUME_ANALYSIS_COMPLETED
        ),
    )
    registry.register(
        JobType.PROCESS_EXPENSE_CSV.value,
        ProcessDocumentHandler(
            settings, RagType.EXPENSE, EventType.MONTHLY_EXPENSE_SUMMARY_READY
        ),
    )

    # Webhooks
    registry.register(JobType.DISPATCH_WEBHOOKS.value, WebhookDispatcher(settings))
    registry.register(JobType.DELIVER_WEBHOOK.value, WebhookDeliveryExecutor(settings))

    logger.info(
        "Job handlers registered", extra={"registered_handlers": registry.list()}
    )
