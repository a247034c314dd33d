from typing import Any
from uuid import UUID

from docchat.v1.core.exceptions import NonRetryableJobError


def parse_payload_uuid(payload: dict[str, Any], key: str) -> UUID:
    """Read a UUID field from a job payload; malformed payloads cannot be retried."""
    value = payload.get(key)
    if not value:
        raise NonRetryableJobError(f"{key} is required in payload")
    try:
        return UUID(str(value))
    except ValueError:
        raise NonRetryableJobError(f"Invalid {key} format: {value}") from None
