from __future__ import annotations

import json

import httpx
import pytest

from mailscout.errors import ExternalAPIError, RateLimitError, ValidationError
from mailscout.retry import RetryPolicy
from mailscout.tools.firecrawl import (
    SCRAPER_RETRYABLE_PATTERNS,
    ScraperClient,
    normalize_extraction,
)

NO_WAIT = RetryPolicy(
    max_attempts=3,
    initial_delay=0.0,
    max_delay=0.0,
    retryable_patterns=SCRAPER_RETRYABLE_PATTERNS,
)


def _scraper(handler, **overrides) -> tuple[ScraperClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    options = {"api_key": "fc-key", "retry_policy": NO_WAIT, "poll_interval": 0.0, "http_client": http_client}
    options.update(overrides)
    return ScraperClient(**options), seen


SEARCH_PAYLOAD = {
    "success": True,
    "data": [
        {"url": "https://tonys.example.com", "title": "Tony's Pizza", "description": "Best slice in town"},
        {"url": "https://marios.example.com", "metadata": {"title": "Mario's", "description": "Family pizzeria"}},
        {"title": "No URL, skipped"},
    ],
}

EXTRACT_PAYLOAD = {
    "business_info": {
        "name": "Tony's Pizza",
        "phone": "555-0100",
        "business_type": "Restaurant",
        "social_media": ["https://instagram.com/tonys"],
    },
    "branding": {"colors": ["red", "white"], "logo_url": "https://tonys.example.com/logo.png"},
    "marketing": {
        "target_audience": "Families and students",
        "promotions": [{"type": "discount", "description": "2 for 1 Tuesdays"}],
    },
}


class TestSearch:
    @pytest.mark.asyncio
    async def test_maps_results_in_provider_order(self):
        scraper, seen = _scraper(lambda request: httpx.Response(200, json=SEARCH_PAYLOAD))

        results = await scraper.search("tony's pizza chicago")

        assert [r.url for r in results] == ["https://tonys.example.com", "https://marios.example.com"]
        assert results[1].title == "Mario's"
        assert results[1].description == "Family pizzeria"

        request = seen[0]
        assert request.url.path == "/v1/search"
        assert request.headers["Authorization"] == "Bearer fc-key"
        body = json.loads(request.content)
        assert body["query"] == "tony's pizza chicago"
        assert body["limit"] == 10

    @pytest.mark.asyncio
    async def test_missing_result_list_is_external_error(self):
        scraper, _ = _scraper(lambda request: httpx.Response(200, json={"success": True}))

        with pytest.raises(ExternalAPIError):
            await scraper.search("anything")

    @pytest.mark.asyncio
    async def test_success_false_is_external_error(self):
        scraper, seen = _scraper(lambda request: httpx.Response(200, json={"success": False, "error": "bad"}))

        with pytest.raises(ExternalAPIError):
            await scraper.search("anything")
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_until_success(self):
        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json=SEARCH_PAYLOAD)])
        scraper, seen = _scraper(lambda request: next(responses))

        results = await scraper.search("pizza")

        assert len(results) == 2
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        scraper, seen = _scraper(lambda request: httpx.Response(401, json={"error": "unauthorized"}))

        with pytest.raises(ExternalAPIError, match="HTTP 401"):
            await scraper.search("pizza")
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self):
        scraper, seen = _scraper(
            lambda request: httpx.Response(429, headers={"Retry-After": "0"}),
            retry_policy=RetryPolicy(max_attempts=2, initial_delay=0.0, max_delay=0.0, retryable_patterns=SCRAPER_RETRYABLE_PATTERNS),
        )

        with pytest.raises(RateLimitError) as excinfo:
            await scraper.search("pizza")

        assert excinfo.value.retry_after == 0
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_invalid_json_is_external_error(self):
        scraper, _ = _scraper(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

        with pytest.raises(ExternalAPIError, match="invalid JSON"):
            await scraper.search("pizza")


class TestExtract:
    @pytest.mark.asyncio
    async def test_normalizes_synchronous_payload(self):
        scraper, seen = _scraper(lambda request: httpx.Response(200, json={"success": True, "data": EXTRACT_PAYLOAD}))

        info = await scraper.extract("https://tonys.example.com")

        assert info.details.name == "Tony's Pizza"
        assert info.details.address == ""
        assert info.branding.logo == "https://tonys.example.com/logo.png"
        assert info.marketing.target_audience.demographics == ["Families and students"]
        assert info.marketing.promotions[0].description == "2 for 1 Tuesdays"
        assert json.loads(seen[0].content)["urls"] == ["https://tonys.example.com"]

    @pytest.mark.asyncio
    async def test_polls_async_job_until_completed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "job-1"})
            handler.polls += 1
            if handler.polls < 3:
                return httpx.Response(200, json={"success": True, "status": "processing"})
            return httpx.Response(200, json={"success": True, "status": "completed", "data": EXTRACT_PAYLOAD})

        handler.polls = 0
        scraper, seen = _scraper(handler)

        info = await scraper.extract("https://tonys.example.com")

        assert info.details.phone == "555-0100"
        assert [r.url.path for r in seen] == ["/v1/extract"] + ["/v1/extract/job-1"] * 3

    @pytest.mark.asyncio
    async def test_failed_job_is_external_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "job-2"})
            return httpx.Response(200, json={"success": True, "status": "failed"})

        scraper, seen = _scraper(handler)

        with pytest.raises(ExternalAPIError, match="failed"):
            await scraper.extract("https://tonys.example.com")
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_exhausted_polling_is_not_resubmitted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "job-3"})
            return httpx.Response(200, json={"success": True, "status": "processing"})

        scraper, seen = _scraper(handler, max_polls=2)

        with pytest.raises(ExternalAPIError, match="did not finish within 2 polls"):
            await scraper.extract("https://tonys.example.com")
        assert [r.method for r in seen] == ["POST", "GET", "GET"]

    @pytest.mark.asyncio
    async def test_empty_extraction_is_validation_error(self):
        scraper, seen = _scraper(lambda request: httpx.Response(200, json={"success": True, "data": {}}))

        with pytest.raises(ValidationError):
            await scraper.extract("https://tonys.example.com")
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_retry_budget(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        scraper, seen = _scraper(handler)

        with pytest.raises(ExternalAPIError, match="ETIMEDOUT") as excinfo:
            await scraper.extract("https://tonys.example.com")

        assert excinfo.value.status_code == 502
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_connection_refused_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        scraper, seen = _scraper(handler)

        with pytest.raises(ExternalAPIError, match="ECONNREFUSED"):
            await scraper.extract("https://tonys.example.com")
        assert len(seen) == 3


class TestScrapeImages:
    @pytest.mark.asyncio
    async def test_prefers_javascript_action_result(self):
        payload = {
            "success": True,
            "data": {
                "actions": {
                    "javascriptReturns": [
                        {"type": "object", "value": [
                            {"src": "/img/hero.jpg", "alt": "Hero", "width": 800, "height": 400},
                            {"src": "/img/hero.jpg", "alt": "Duplicate", "width": 800, "height": 400},
                        ]}
                    ]
                },
                "html": '<img src="/ignored.png">',
            },
        }
        scraper, _ = _scraper(lambda request: httpx.Response(200, json=payload))

        images = await scraper.scrape_images("https://tonys.example.com/menu")

        assert len(images) == 1
        assert images[0].src == "https://tonys.example.com/img/hero.jpg"
        assert images[0].width == 800

    @pytest.mark.asyncio
    async def test_falls_back_to_html_img_tags(self):
        html = '<div><img src="a.jpg" alt="A" width="300" height="200"><img data-src="https://cdn.example.com/b.jpg"></div>'
        scraper, _ = _scraper(lambda request: httpx.Response(200, json={"success": True, "data": {"html": html}}))

        images = await scraper.scrape_images("https://tonys.example.com/")

        assert [img.src for img in images] == ["https://tonys.example.com/a.jpg", "https://cdn.example.com/b.jpg"]
        assert images[0].alt == "A"
        assert images[0].height == 200
        assert images[1].width == 0

    @pytest.mark.asyncio
    async def test_non_finite_dimensions_default_to_zero(self):
        html = '<img src="/a.png" width="1e999" height="200"><img src="/b.png" width="inf" height="nan">'
        scraper, _ = _scraper(lambda request: httpx.Response(200, json={"success": True, "data": {"html": html}}))

        images = await scraper.scrape_images("https://tonys.example.com/")

        assert [(img.width, img.height) for img in images] == [(0, 200), (0, 0)]

    @pytest.mark.asyncio
    async def test_infinite_json_dimensions_default_to_zero(self):
        body = (
            b'{"success": true, "data": {"actions": {"javascriptReturns": '
            b'[{"value": [{"src": "/c.png", "width": Infinity, "height": 1e999}]}]}}}'
        )
        scraper, _ = _scraper(lambda request: httpx.Response(200, content=body))

        images = await scraper.scrape_images("https://tonys.example.com/")

        assert (images[0].width, images[0].height) == (0, 0)


def test_normalize_extraction_accepts_list_payload():
    info = normalize_extraction([{}, EXTRACT_PAYLOAD])

    assert info is not None
    assert info.details.name == "Tony's Pizza"


def test_normalize_extraction_rejects_empty_payload():
    assert normalize_extraction(None) is None
    assert normalize_extraction({"unrelated": 1}) is None
