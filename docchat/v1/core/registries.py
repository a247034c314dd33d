from typing import Any, Generic, Protocol, TypeVar

from docchat.v1.core.exceptions import UnknownJobTypeError
from docchat.v1.infra.jobs.models import JobType

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(
        self,
        session: Any,  # AsyncSession
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        """
        Handle a background job.

        Handlers may run more than once for the same payload (a worker can
        die between doing the work and recording completion), so they must
        re-read persisted state instead of assuming a side effect has not
        happened yet.

        Args:
            session: Database session for job processing
            payload: Job-specific parameters

        Returns:
            Optional result dictionary, logged by the worker
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """
    Registry for background job handlers.

    The set of tags is closed: only JobType members can be registered, and
    looking up anything else is a structural error rather than a miss to
    retry later.
    """

    def __init__(self):
        super().__init__("Job")

    def register(self, name: str, implementation: JobHandler) -> None:
        try:
            job_type = JobType(name)
        except ValueError:
            raise ValueError(f"Unknown job type: {name}") from None
        super().register(job_type.value, implementation)

    def get(self, name: str) -> JobHandler:
        try:
            return super().get(name)
        except KeyError:
            raise UnknownJobTypeError(name) from None


# Document pipeline registry - text extraction and index maintenance
class DocumentPipeline(Protocol):
    """Protocol for the document pipeline collaborator."""

    async def extract_text(self, document: Any) -> str:
        """Extract plain text from an uploaded document."""
        ...

    async def delete_index(
        self, session: Any, document_id: Any, user_id: Any, rag_type: str
    ) -> None:
        """Remove every indexed chunk of a document."""
        ...

    async def upsert_index(
        self,
        session: Any,
        document_id: Any,
        user_id: Any,
        rag_type: str,
        chunks: list[str],
    ) -> int:
        """Store chunks for a document, returning the number written."""
        ...


class DocumentPipelineRegistry(Registry[DocumentPipeline]):
    """Registry for document pipelines (local, ...)."""

    def __init__(self):
        super().__init__("DocumentPipeline")


# Global registry instances (singletons)
job_registry = JobRegistry()
pipeline_registry = DocumentPipelineRegistry()
