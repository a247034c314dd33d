from typing import Any

import pytest

from docchat.config.settings import Settings
from docchat.v1.core.exceptions import NonRetryableJobError, UnknownJobTypeError
from docchat.v1.core.registries import (
    DocumentPipelineRegistry,
    JobRegistry,
    Registry,
)
from docchat.v1.infra.jobs.models import JobType
from docchat.v1.infra.jobs.registry_init import (
    init_pipeline_registry,
    register_job_handlers,
)


class MockHandler:
    async def handle(self, session: Any, payload: dict[str, Any]) -> dict[str, Any]:
        return {"ok": True}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]

    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_overwrite():
    """Test that registering with same name overwrites."""
    registry = Registry[str]("Test")

    registry.register("impl", "value1")
    registry.register("impl", "value2")

    assert registry.get("impl") == "value2"
    assert registry.list() == ["impl"]


def test_registry_freeze():
    registry = Registry[str]("Test")
    registry.register("impl", "value")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("other", "value")
    assert registry.get("impl") == "value"


def test_job_registry_rejects_unknown_tag():
    registry = JobRegistry()

    with pytest.raises(ValueError, match="Unknown job type: mystery"):
        registry.register("mystery", MockHandler())


def test_job_registry_missing_handler_is_non_retryable():
    """A tag with no handler is a structural error, not a transient miss."""
    registry = JobRegistry()
    registry.register(JobType.DELIVER_WEBHOOK.value, MockHandler())

    with pytest.raises(UnknownJobTypeError) as exc_info:
        registry.get(JobType.DISPATCH_WEBHOOKS.value)

    assert isinstance(exc_info.value, NonRetryableJobError)
    assert exc_info.value.job_type == "dispatch-webhooks"

    with pytest.raises(UnknownJobTypeError):
        registry.get("mystery")


def test_register_job_handlers_covers_every_job_type():
    settings = Settings(_env_file=None)
    registry = JobRegistry()

    register_job_handlers(settings, registry)

    assert set(registry.list()) == {job_type.value for job_type in JobType}


def test_init_pipeline_registry_rejects_unknown_pipeline():
    registry = DocumentPipelineRegistry()
    settings = Settings(_env_file=None, document_pipeline="cloud")

    with pytest.raises(RuntimeError, match="Configured document pipeline 'cloud'"):
        init_pipeline_registry(settings, registry)

    assert registry.list() == ["local"]
