"""
Microsoft Graph client for OneNote notebooks, sections and pages.
"""

import logging
from datetime import UTC, datetime

import httpx

from onenote_flashcards.exceptions import RemoteUnavailableError
from onenote_flashcards.schemas import OneNotePage

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class GraphClient:
    """Thin Microsoft Graph wrapper authenticated with one bearer token."""

    def __init__(self, access_token: str, client: httpx.Client | None = None):
        self.access_token = access_token
        self._client = client or httpx.Client(timeout=60.0)

    def _request(self, url: str, params: dict | None = None) -> httpx.Response:
        if not url.startswith("https://"):
            url = f"{GRAPH_BASE_URL}{url}"
        try:
            response = self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error("Graph API call %s failed with %s", url, e.response.status_code)
            raise RemoteUnavailableError(
                f"Graph API returned {e.response.status_code}", e
            ) from e
        except httpx.HTTPError as e:
            logger.error("Graph API call %s failed: %s", url, e)
            raise RemoteUnavailableError(f"Graph API call failed: {e}", e) from e

    def get_json(self, url: str, params: dict | None = None) -> dict:
        try:
            return self._request(url, params).json()
        except ValueError as e:
            raise RemoteUnavailableError("Graph API returned invalid JSON", e) from e

    def get_all(self, url: str, params: dict | None = None) -> list[dict]:
        """Collect ``value`` items across every ``@odata.nextLink`` page."""
        results: list[dict] = []
        next_link: str | None = url
        while next_link:
            logger.debug("Fetching page of results from %s", next_link)
            data = self.get_json(next_link, params)
            value = data.get("value")
            if isinstance(value, list):
                results.extend(value)
            next_link = data.get("@odata.nextLink")
            # The next link already carries the query
            params = None
        return results

    def get_me(self) -> dict:
        return self.get_json("/me")

    def get_notebooks(self) -> list[dict]:
        return self.get_all("/me/onenote/notebooks")

    def get_sections(self, notebook_id: str) -> list[dict]:
        return self.get_all(f"/me/onenote/notebooks/{notebook_id}/sections")

    def get_pages(
        self, section_id: str, modified_since: datetime | None = None
    ) -> list[OneNotePage]:
        """
        List pages of a section, optionally only those modified since a time.

        Args:
            section_id: OneNote section id
            modified_since: Only return pages modified at or after this instant
        """
        params = {"$select": "id,title,lastModifiedDateTime", "$top": 100}
        if modified_since is not None:
            since = modified_since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
            params["$filter"] = f"lastModifiedDateTime ge {since}"
        items = self.get_all(f"/me/onenote/sections/{section_id}/pages", params)
        return [OneNotePage.model_validate(item) for item in items]

    def get_page_content(self, page_id: str) -> str:
        """Raw HTML of a page."""
        return self._request(f"/me/onenote/pages/{page_id}/content").text
