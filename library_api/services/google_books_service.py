import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from library_api.config import settings
from library_api.errors import BadRequest, NotFound, UpstreamFailure
from library_api.services.http_client import HTTPClient, get_http_client

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown Author"

_YEAR_RE = re.compile(r"^\s*(\d{4})")


@dataclass
class CatalogBook:
    """A Google Books volume mapped onto the catalog's book shape"""
    id: str
    title: str
    author: str = UNKNOWN_AUTHOR
    description: str = ""
    publication_year: int = 0
    cover_image: str = ""
    preview_link: str = ""
    info_link: str = ""

    def to_dict(self, include_availability: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "publication_year": self.publication_year,
            "cover_image": self.cover_image,
            "previewLink": self.preview_link,
            "infoLink": self.info_link,
        }
        if include_availability:
            # External results are never on loan here
            data["isAvailable"] = True
        return data


def parse_publication_year(published_date: Optional[str]) -> int:
    """Leading year of a Google Books ``publishedDate`` ("2004", "2004-05-01"), else 0."""
    if not published_date:
        return 0
    match = _YEAR_RE.match(str(published_date))
    return int(match.group(1)) if match else 0


def secure_url(url: Optional[str]) -> str:
    if not url:
        return ""
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


class GoogleBooksService:
    """Stateless proxy to the Google Books volumes API"""

    def __init__(self, api_key: Optional[str] = None, client: Optional[HTTPClient] = None):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = "https://www.googleapis.com/books/v1"
        self.timeout = settings.google_books_timeout
        self.max_results = settings.google_books_max_results
        self._client = client

    async def _make_api_request(self, endpoint: str, params: Dict[str, Any], failure_message: str) -> Dict[str, Any]:
        """GET an endpoint and return its JSON object, raising ``UpstreamFailure`` on any problem."""
        url = f"{self.base_url}/{endpoint}"

        if self.api_key:
            params["key"] = self.api_key

        client = self._client or await get_http_client()
        start_time = time.time()

        try:
            response = await client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"Google Books request timed out after {self.timeout}s: {endpoint}")
            raise UpstreamFailure(failure_message, f"Request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.error(f"Google Books request failed: {endpoint}: {e}")
            raise UpstreamFailure(failure_message, str(e)) from e

        response_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Google Books {endpoint} -> {response.status_code} in {response_time_ms}ms")

        if response.status_code == 404:
            raise NotFound("Book not found")
        if response.status_code != 200:
            details = self._error_details(response)
            logger.error(f"Google Books request failed: {response.status_code} - {details}")
            raise UpstreamFailure(failure_message, details)

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"Google Books returned invalid JSON for {endpoint}")
            raise UpstreamFailure(failure_message, "Malformed response from Google Books") from e

        if not isinstance(payload, dict):
            raise UpstreamFailure(failure_message, "Malformed response from Google Books")
        return payload

    @staticmethod
    def _error_details(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message") or f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}"

    @staticmethod
    def parse_volume(item: Dict[str, Any]) -> CatalogBook:
        """Map one volume resource onto a ``CatalogBook``."""
        if not isinstance(item, dict) or not item.get("id"):
            raise ValueError("volume without id")
        volume_info = item.get("volumeInfo") or {}
        if not isinstance(volume_info, dict):
            raise ValueError("volumeInfo is not an object")

        authors = volume_info.get("authors") or []
        image_links = volume_info.get("imageLinks") or {}

        return CatalogBook(
            id=item["id"],
            title=volume_info.get("title") or "",
            author=", ".join(authors) if authors else UNKNOWN_AUTHOR,
            description=volume_info.get("description") or "",
            publication_year=parse_publication_year(volume_info.get("publishedDate")),
            cover_image=secure_url(image_links.get("thumbnail")),
            preview_link=volume_info.get("previewLink") or "",
            info_link=volume_info.get("infoLink") or "",
        )

    async def search_books(self, query: Optional[str], max_results: Optional[int] = None) -> List[CatalogBook]:
        """
        Search Google Books with a free-text query

        Args:
            query: Search query (title, author, etc.)
            max_results: Maximum number of results (Google caps this at 40)

        Returns:
            List of CatalogBook objects; empty when nothing matched
        """
        if not query or not query.strip():
            raise BadRequest("Search query required")

        failure_message = "Failed to fetch books"
        params = {
            "q": query.strip(),
            "maxResults": min(max_results or self.max_results, 40),
        }
        payload = await self._make_api_request("volumes", params, failure_message)

        items = payload.get("items")
        if items is None:
            if payload.get("totalItems", 0) == 0:
                logger.info(f"No books found for query: {query}")
                return []
            raise UpstreamFailure(failure_message, "No items in Google Books response")
        if not isinstance(items, list):
            raise UpstreamFailure(failure_message, "Malformed response from Google Books")

        try:
            books = [self.parse_volume(item) for item in items]
        except (ValueError, AttributeError, TypeError) as e:
            logger.error(f"Failed to parse Google Books search results: {e}")
            raise UpstreamFailure(failure_message, "Malformed response from Google Books") from e

        logger.info(f"Found {len(books)} books for query: {query}")
        return books

    async def get_book(self, volume_id: str) -> CatalogBook:
        """Fetch a single volume by its Google Books id"""
        if not volume_id or not volume_id.strip():
            raise BadRequest("Volume id required")

        failure_message = "Failed to fetch book details"
        payload = await self._make_api_request(f"volumes/{quote(volume_id.strip(), safe='')}", {}, failure_message)
        try:
            return self.parse_volume(payload)
        except (ValueError, AttributeError, TypeError) as e:
            logger.error(f"Failed to parse Google Books volume {volume_id}: {e}")
            raise UpstreamFailure(failure_message, "Malformed response from Google Books") from e
