"""Work item sources.

The pipeline needs exactly one thing from the issue tracker: the summary and
description of one item. :class:`JiraWorkItemProvider` fetches them over the
Jira REST API; :class:`StaticWorkItemProvider` serves items held in memory
for offline runs and tests.
"""

from typing import Any, Protocol

import httpx
import structlog

from ticket_pilot.engine.prompts import format_item_description
from ticket_pilot.exceptions import ExternalServiceError
from ticket_pilot.models.domain import WorkItem
from ticket_pilot.utils.retry import async_retry

log = structlog.get_logger(__name__)


class WorkItemProvider(Protocol):
    async def get_item(self, key: str) -> WorkItem: ...


class JiraWorkItemProvider:
    """Fetches work items from Jira with basic auth."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the provider.

        Args:
            base_url: Jira base URL (e.g., https://example.atlassian.net)
            email: Account email
            api_token: API token
            transport: Optional httpx transport, used by tests
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(email, api_token.strip()),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "JiraWorkItemProvider":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def _fetch(self, key: str) -> httpx.Response:
        return await self._client.get(
            f"/rest/api/2/issue/{key}",
            params={"fields": "summary,description"},
        )

    async def get_item(self, key: str) -> WorkItem:
        """Fetch one item.

        Raises:
            ExternalServiceError: The item does not exist, access was denied
                or Jira could not be reached.
        """
        log.info("work_item_fetching", key=key)
        try:
            response = await self._fetch(key)
        except httpx.TransportError as e:
            raise ExternalServiceError(f"Failed to reach Jira at {self.base_url}: {e}") from e

        if response.status_code == 404:
            raise ExternalServiceError(f"Work item {key} not found", status_code=404, response_text=response.text)
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Failed to fetch work item {key}",
                status_code=response.status_code,
                response_text=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalServiceError(
                f"Jira returned a non-JSON response for work item {key}",
                status_code=response.status_code,
                response_text=response.text[:500],
            ) from e
        fields = (payload.get("fields") or {}) if isinstance(payload, dict) else None
        if not isinstance(fields, dict):
            raise ExternalServiceError(
                f"Unexpected Jira response for work item {key}",
                status_code=response.status_code,
                response_text=response.text[:500],
            )
        summary = fields.get("summary") or ""
        description = fields.get("description") or ""
        if not isinstance(description, str):
            description = str(description)

        log.info("work_item_fetched", key=key, summary=summary)
        return WorkItem(key=key, summary=summary, description=format_item_description(key, summary, description))


class StaticWorkItemProvider:
    """Serves items from a mapping of key to (summary, description)."""

    def __init__(self, items: dict[str, tuple[str, str]]) -> None:
        self.items = items

    async def get_item(self, key: str) -> WorkItem:
        if key not in self.items:
            raise ExternalServiceError(f"Work item {key} not found", status_code=404)
        summary, description = self.items[key]
        return WorkItem(key=key, summary=summary, description=format_item_description(key, summary, description))
