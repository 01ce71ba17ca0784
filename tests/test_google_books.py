import asyncio

import httpx
import pytest

from library_api.errors import BadRequest, NotFound, UpstreamFailure
from library_api.services.google_books_service import (
    UNKNOWN_AUTHOR,
    GoogleBooksService,
    parse_publication_year,
    secure_url,
)
from library_api.services.http_client import HTTPClient

VOLUME = {
    "id": "zyTCAlFPjgYC",
    "volumeInfo": {
        "title": "The Google Story",
        "authors": ["David A. Vise", "Mark Malseed"],
        "description": "Inside the hottest business.",
        "publishedDate": "2005-11-15",
        "imageLinks": {"thumbnail": "http://books.google.com/books/content?id=zyTCAlFPjgYC"},
        "previewLink": "http://books.google.com/books?id=zyTCAlFPjgYC&printsec=frontcover",
        "infoLink": "http://books.google.com/books?id=zyTCAlFPjgYC",
    },
}


def _service(handler, requests=None):
    def record(request):
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = HTTPClient(transport=httpx.MockTransport(record))
    return GoogleBooksService(api_key="test-key", client=client)


def test_parse_publication_year():
    assert parse_publication_year("2005-11-15") == 2005
    assert parse_publication_year("1999") == 1999
    assert parse_publication_year("") == 0
    assert parse_publication_year(None) == 0
    assert parse_publication_year("unknown") == 0


def test_secure_url():
    assert secure_url("http://example.com/a.jpg") == "https://example.com/a.jpg"
    assert secure_url("https://example.com/a.jpg") == "https://example.com/a.jpg"
    assert secure_url(None) == ""


def test_parse_volume_with_missing_fields():
    book = GoogleBooksService.parse_volume({"id": "abc", "volumeInfo": {"title": "Bare"}})
    assert book.author == UNKNOWN_AUTHOR
    assert book.publication_year == 0
    assert book.cover_image == ""
    assert book.description == ""


def test_search_maps_volumes():
    requests = []
    service = _service(lambda request: httpx.Response(200, json={"totalItems": 1, "items": [VOLUME]}), requests)

    books = asyncio.run(service.search_books("google"))

    assert len(books) == 1
    data = books[0].to_dict(include_availability=True)
    assert data["id"] == "zyTCAlFPjgYC"
    assert data["author"] == "David A. Vise, Mark Malseed"
    assert data["publication_year"] == 2005
    assert data["cover_image"].startswith("https://")
    assert data["isAvailable"] is True

    sent = requests[0]
    assert sent.url.path == "/books/v1/volumes"
    assert sent.url.params["q"] == "google"
    assert sent.url.params["key"] == "test-key"


def test_search_with_no_results():
    service = _service(lambda request: httpx.Response(200, json={"kind": "books#volumes", "totalItems": 0}))
    assert asyncio.run(service.search_books("zzzzqqq")) == []


def test_empty_query_makes_no_upstream_call():
    requests = []
    service = _service(lambda request: httpx.Response(200, json={}), requests)

    with pytest.raises(BadRequest, match="Search query required"):
        asyncio.run(service.search_books("   "))
    with pytest.raises(BadRequest):
        asyncio.run(service.search_books(None))

    assert requests == []


def test_upstream_error_becomes_upstream_failure():
    body = {"error": {"code": 500, "message": "Backend Error"}}
    service = _service(lambda request: httpx.Response(500, json=body))

    with pytest.raises(UpstreamFailure) as excinfo:
        asyncio.run(service.search_books("python"))

    assert excinfo.value.status_code == 502
    assert excinfo.value.message == "Failed to fetch books"
    assert excinfo.value.details == "Backend Error"


def test_timeout_becomes_upstream_failure():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    service = _service(handler)
    with pytest.raises(UpstreamFailure, match="Failed to fetch books"):
        asyncio.run(service.search_books("python"))


def test_malformed_json_becomes_upstream_failure():
    service = _service(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(UpstreamFailure) as excinfo:
        asyncio.run(service.search_books("python"))
    assert excinfo.value.details == "Malformed response from Google Books"


def test_get_book_by_volume_id():
    requests = []
    service = _service(lambda request: httpx.Response(200, json=VOLUME), requests)

    book = asyncio.run(service.get_book("zyTCAlFPjgYC"))

    assert book.title == "The Google Story"
    assert requests[0].url.path == "/books/v1/volumes/zyTCAlFPjgYC"
    assert "isAvailable" not in book.to_dict()


def test_get_book_not_found():
    service = _service(lambda request: httpx.Response(404, json={"error": {"message": "The volume ID could not be found."}}))
    with pytest.raises(NotFound, match="Book not found"):
        asyncio.run(service.get_book("missing"))


def test_get_book_upstream_failure_message():
    service = _service(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(UpstreamFailure, match="Failed to fetch book details"):
        asyncio.run(service.get_book("abc"))
