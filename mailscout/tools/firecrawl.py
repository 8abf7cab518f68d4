"""Firecrawl v1 client: search, structured extraction and image scraping.

Each public operation is wrapped by ``retryable`` and translates transport
failures into the typed errors in ``mailscout.errors`` on every attempt, so
the retry wrapper can match them against ``SCRAPER_RETRYABLE_PATTERNS``.
"""
from __future__ import annotations

import asyncio
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from bs4 import BeautifulSoup

from mailscout.config import Settings
from mailscout.errors import (
    ExternalAPIError,
    RateLimitError,
    ValidationError,
    parse_retry_after,
)
from mailscout.models.business import (
    Branding,
    BusinessDetails,
    BusinessInfo,
    Marketing,
    ScrapedImage,
    as_dict,
    as_int,
    as_str,
    as_str_list,
    build_market_analysis,
    build_promotions,
    build_target_audience,
)
from mailscout.models.interfaces import SearchResult
from mailscout.retry import RetryPolicy, retryable
from mailscout.services import logger as log_service
from mailscout.tools.web_utils import absolute_url, clean_content

SCRAPER_RETRYABLE_PATTERNS: tuple[str | re.Pattern[str], ...] = (
    "ECONNREFUSED",
    "ETIMEDOUT",
    "RateLimitError",
    re.compile(r"HTTP 429"),
    re.compile(r"HTTP 5\d\d"),
)

EXTRACT_SYSTEM_PROMPT = (
    "You are a business information extractor. Extract key business details, "
    "branding elements, and promotional content."
)
EXTRACT_PROMPT = (
    "Extract all available business information, focusing on contact details, "
    "branding, and current promotions or deals."
)

_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

EXTRACT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "business_info": {
            "type": "object",
            "properties": {
                "name": _STRING,
                "address": _STRING,
                "phone": _STRING,
                "hours": _STRING,
                "website": _STRING,
                "social_media": _STRING_LIST,
                "business_type": _STRING,
                "service_area": _STRING_LIST,
                "year_established": _STRING,
                "employee_count": _STRING,
            },
        },
        "branding": {
            "type": "object",
            "properties": {
                "colors": _STRING_LIST,
                "logo_url": _STRING,
                "images": _STRING_LIST,
                "brand_voice": _STRING,
                "visual_style": _STRING,
            },
        },
        "marketing": {
            "type": "object",
            "properties": {
                "target_audience": _STRING,
                "promotions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "type": _STRING,
                            "description": _STRING,
                            "value": _STRING,
                            "expiration": _STRING,
                            "conditions": _STRING,
                        },
                    },
                },
                "key_messages": _STRING_LIST,
                "unique_selling_points": _STRING_LIST,
            },
        },
    },
    "required": ["business_info"],
}

# Runs inside the rendered page; tiny images (icons, pixels) are dropped there.
IMAGE_SCRIPT = """
const images = Array.from(document.images)
  .map(img => ({ src: img.src, alt: img.alt, width: img.width, height: img.height }))
  .filter(img => img.width > 100 && img.height > 100);
return images;
"""


def normalize_extraction(payload: Any) -> BusinessInfo | None:
    """Map Firecrawl's snake_case extraction payload onto BusinessInfo."""
    if isinstance(payload, list):
        payload = next((item for item in payload if isinstance(item, dict) and item), None)
    raw = as_dict(payload)
    if not raw:
        return None

    info = as_dict(raw.get("business_info") or raw.get("details"))
    branding = as_dict(raw.get("branding"))
    marketing = as_dict(raw.get("marketing"))
    if not (info or branding or marketing):
        return None

    return BusinessInfo(
        details=BusinessDetails(
            name=as_str(info.get("name")),
            address=as_str(info.get("address")),
            phone=as_str(info.get("phone")),
            hours=as_str(info.get("hours")),
            website=as_str(info.get("website")),
            social_media=as_str_list(info.get("social_media")),
            business_type=as_str(info.get("business_type")),
            service_area=as_str_list(info.get("service_area")),
            year_established=as_str(info.get("year_established")),
            employee_count=as_str(info.get("employee_count")),
        ),
        branding=Branding(
            colors=as_str_list(branding.get("colors")),
            logo=as_str(branding.get("logo_url") or branding.get("logo")),
            images=as_str_list(branding.get("images")),
            brand_voice=as_str(branding.get("brand_voice")),
            visual_style=as_str(branding.get("visual_style")),
        ),
        marketing=Marketing(
            target_audience=build_target_audience(marketing.get("target_audience")),
            promotions=build_promotions(marketing.get("promotions")),
            key_messages=as_str_list(marketing.get("key_messages")),
            unique_selling_points=as_str_list(marketing.get("unique_selling_points")),
        ),
        market_analysis=build_market_analysis(raw.get("market_analysis")),
    )


def _images_from_actions(body: dict[str, Any]) -> list[dict[str, Any]] | None:
    actions = as_dict(body.get("actions"))
    for returned in actions.get("javascriptReturns") or []:
        value = returned.get("value") if isinstance(returned, dict) else None
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
    return None


def _images_from_html(html: str) -> list[dict[str, Any]]:
    soup = BeautifulSoup(html, "html.parser")
    return [
        {
            "src": tag.get("src") or tag.get("data-src") or "",
            "alt": tag.get("alt") or "",
            "width": tag.get("width"),
            "height": tag.get("height"),
        }
        for tag in soup.find_all("img")
    ]


def _to_images(page_url: str, raw_images: list[dict[str, Any]]) -> list[ScrapedImage]:
    images: list[ScrapedImage] = []
    seen: set[str] = set()
    for item in raw_images:
        src = absolute_url(page_url, as_str(item.get("src")))
        if not src or src in seen:
            continue
        seen.add(src)
        images.append(
            ScrapedImage(
                src=src,
                alt=as_str(item.get("alt")),
                width=as_int(item.get("width")),
                height=as_int(item.get("height")),
            )
        )
    return images


class ScraperClient:
    """Retrying Firecrawl client."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.firecrawl.dev",
        timeout: float = 30.0,
        search_limit: int = 10,
        retry_policy: RetryPolicy | None = None,
        poll_interval: float = 2.0,
        max_polls: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.search_limit = max(int(search_limit), 1)
        self.retry_policy = retry_policy or RetryPolicy(
            retryable_patterns=SCRAPER_RETRYABLE_PATTERNS
        )
        self.poll_interval = max(float(poll_interval), 0.0)
        self.max_polls = max(int(max_polls), 1)
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScraperClient":
        return cls(
            api_key=settings.firecrawl_api_key,
            base_url=settings.firecrawl_base_url,
            timeout=settings.scraper_timeout_seconds,
            search_limit=settings.search_result_limit,
            retry_policy=RetryPolicy(
                max_attempts=settings.scraper_retry_max_attempts,
                initial_delay=settings.scraper_retry_initial_delay,
                max_delay=settings.scraper_retry_max_delay,
                retryable_patterns=SCRAPER_RETRYABLE_PATTERNS,
            ),
            poll_interval=settings.extract_poll_interval_seconds,
            max_polls=settings.extract_max_polls,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        t0 = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - t0) * 1000)

        try:
            async with self._client() as client:
                if method == "GET":
                    response = await client.get(url, headers=headers, timeout=self.timeout)
                else:
                    response = await client.post(
                        url, json=payload, headers=headers, timeout=self.timeout
                    )
        except httpx.TimeoutException as exc:
            log_service.log_scraper_call(path, duration_ms=elapsed(), error="timeout")
            raise ExternalAPIError(
                f"Firecrawl {path} request timed out (ETIMEDOUT)",
                {"endpoint": path},
            ) from exc
        except httpx.ConnectError as exc:
            log_service.log_scraper_call(path, duration_ms=elapsed(), error="connect")
            raise ExternalAPIError(
                f"Firecrawl {path} connection failed (ECONNREFUSED)",
                {"endpoint": path},
            ) from exc
        except httpx.TransportError as exc:
            log_service.log_scraper_call(path, duration_ms=elapsed(), error=type(exc).__name__)
            raise ExternalAPIError(
                f"Firecrawl {path} transport failure: {type(exc).__name__}",
                {"endpoint": path},
            ) from exc

        status = response.status_code
        if status == 429:
            log_service.log_scraper_call(path, status, elapsed(), error="rate_limited")
            raise RateLimitError(
                f"Firecrawl {path} rate limit exceeded (HTTP 429)",
                {"endpoint": path},
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 400:
            log_service.log_scraper_call(path, status, elapsed(), error=f"HTTP {status}")
            raise ExternalAPIError(
                f"Firecrawl {path} responded with HTTP {status}",
                {"endpoint": path, "status": status},
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalAPIError(
                f"Firecrawl {path} returned invalid JSON", {"endpoint": path}
            ) from exc
        if not isinstance(data, dict):
            raise ExternalAPIError(
                f"Firecrawl {path} returned an unexpected payload", {"endpoint": path}
            )

        log_service.log_scraper_call(path, status, elapsed())
        return data

    @staticmethod
    def _ensure_success(path: str, data: dict[str, Any]) -> None:
        if data.get("success") is False:
            raise ExternalAPIError(
                f"Firecrawl {path} reported failure",
                {"endpoint": path, "reason": as_str(data.get("error")) or None},
            )

    @retryable(label="firecrawl.search")
    async def search(self, query: str) -> list[SearchResult]:
        """Search the web; results keep provider relevance order."""
        data = await self._request(
            "POST",
            "/v1/search",
            {
                "query": query,
                "limit": self.search_limit,
                "scrapeOptions": {"formats": ["markdown"], "onlyMainContent": True},
            },
        )
        self._ensure_success("/v1/search", data)
        items = data.get("data")
        if not isinstance(items, list):
            raise ExternalAPIError(
                "Firecrawl /v1/search returned no result list", {"endpoint": "/v1/search"}
            )

        results: list[SearchResult] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            url = as_str(item.get("url"))
            if not url:
                continue
            metadata = as_dict(item.get("metadata"))
            content = item.get("markdown")
            results.append(
                SearchResult(
                    url=url,
                    title=as_str(item.get("title") or metadata.get("title")),
                    description=clean_content(
                        as_str(item.get("description") or metadata.get("description")),
                        max_length=500,
                    ),
                    content=content if isinstance(content, str) and content else None,
                )
            )
        return results

    @retryable(label="firecrawl.extract")
    async def extract(self, url: str) -> BusinessInfo:
        """Extract a normalized business record from one page."""
        data = await self._request(
            "POST",
            "/v1/extract",
            {
                "urls": [url],
                "schema": EXTRACT_SCHEMA,
                "systemPrompt": EXTRACT_SYSTEM_PROMPT,
                "prompt": EXTRACT_PROMPT,
            },
        )
        self._ensure_success("/v1/extract", data)

        payload = data.get("data")
        if not payload and data.get("id"):
            payload = await self._poll_extract(str(data["id"]))

        info = normalize_extraction(payload)
        if info is None:
            raise ValidationError(
                "No business information could be extracted", {"url": url}
            )
        return info

    async def _poll_extract(self, job_id: str) -> Any:
        path = f"/v1/extract/{job_id}"
        for _ in range(self.max_polls):
            data = await self._request("GET", path)
            self._ensure_success(path, data)
            status = as_str(data.get("status")).lower()
            if status == "completed":
                return data.get("data")
            if status in ("failed", "cancelled"):
                raise ExternalAPIError(
                    f"Firecrawl extract job {status}", {"endpoint": path, "job_id": job_id}
                )
            await asyncio.sleep(self.poll_interval)
        # Poll exhaustion is final: the scraper retry patterns must not match this message.
        raise ExternalAPIError(
            f"Firecrawl extract job did not finish within {self.max_polls} polls",
            {"endpoint": path, "job_id": job_id, "polls": self.max_polls},
        )

    @retryable(label="firecrawl.scrape_images")
    async def scrape_images(self, url: str) -> list[ScrapedImage]:
        """Collect images rendered on a page."""
        data = await self._request(
            "POST",
            "/v1/scrape",
            {
                "url": url,
                "formats": ["html"],
                "onlyMainContent": True,
                "includeTags": ["img"],
                "actions": [{"type": "executeJavascript", "script": IMAGE_SCRIPT}],
            },
        )
        self._ensure_success("/v1/scrape", data)
        body = as_dict(data.get("data"))

        raw_images = _images_from_actions(body)
        if raw_images is None:
            raw_images = _images_from_html(as_str(body.get("html")))
        return _to_images(url, raw_images)
