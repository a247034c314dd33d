"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from .base import APIClient, DocChatError
from ..utils.config_manager import config

__all__ = ["DocChatClient", "DocChatError"]


class DocChatClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def list_jobs(
        self,
        status: list[str] | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def get_job_stats(self) -> dict[str, Any]:
        """Get queue statistics"""
        return self.api.get("/jobs/stats/overview")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Put a failed job back in the queue"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def recover_jobs(self) -> dict[str, Any]:
        """Reclaim jobs whose worker stopped heartbeating"""
        return self.api.post("/jobs/recover")

    # Webhook Endpoints
    def list_subscriptions(self) -> dict[str, Any]:
        """List webhook subscriptions"""
        return self.api.get("/webhooks/subscriptions")

    def create_subscription(self, url: str, secret: str) -> dict[str, Any]:
        """Register a webhook endpoint"""
        return self.api.post("/webhooks/subscriptions", {"url": url, "secret": secret})

    def set_subscription_active(
        self, subscription_id: str, is_active: bool
    ) -> dict[str, Any]:
        """Enable or disable a subscription"""
        return self.api.patch(
            f"/webhooks/subscriptions/{subscription_id}", {"is_active": is_active}
        )

    def list_deliveries(
        self, status: list[str] | None = None, limit: int = 20, offset: int = 0
    ) -> dict[str, Any]:
        """List webhook deliveries"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        return self.api.get("/webhooks/deliveries", params)

    def redeliver_pending(self, limit: int | None = None) -> dict[str, Any]:
        """Re-enqueue pending deliveries"""
        params = {"limit": limit} if limit else None
        return self.api.post("/webhooks/redeliver", params=params)
