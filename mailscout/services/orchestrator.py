"""Chat pipeline: classify, dispatch, extract, summarize, assemble.

One ``handle`` call walks the states in ``OrchestratorState`` and either
returns a ``ResponseEnvelope`` or raises the ``AppError`` of the stage that
failed. Successful envelopes are cached by conversation fingerprint.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Sequence, TypeVar
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from mailscout.config import Settings
from mailscout.errors import (
    AppError,
    ClassifierError,
    ExternalAPIError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from mailscout.models.business import AdPreferences, BusinessInfo, ScrapedImage, from_function_arguments
from mailscout.models.interfaces import FunctionCallResult, MessageResult
from mailscout.models.schemas import (
    AlternativeResult,
    AnalyzeBusinessQueryArgs,
    ChatMessage,
    ExtractBusinessInfoArgs,
    Pagination,
    ResponseEnvelope,
    validation_details,
)
from mailscout.services import logger as log_service
from mailscout.services.cache import ResponseCache, build_store, fingerprint
from mailscout.tools.classifier import ANALYZE_BUSINESS_QUERY, EXTRACT_BUSINESS_INFO, ClassifierClient
from mailscout.tools.firecrawl import ScraperClient
from mailscout.tools.web_utils import is_valid_url

T = TypeVar("T")


class OrchestratorState(str, Enum):
    CLASSIFYING = "classifying"
    DIRECT = "direct"
    DISPATCHING = "dispatching"
    EXTRACTING = "extracting"
    SUMMARIZING = "summarizing"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class _Target:
    """What the EXTRACTING state works on."""

    url: str | None = None
    business_info: BusinessInfo | None = None
    ad_type: str | None = None
    pagination: Pagination | None = None
    alternatives: tuple[AlternativeResult, ...] = ()


async def gather_first_failure(*aws: Awaitable[Any]) -> list[Any]:
    """Run awaitables concurrently; the first failure cancels the rest.

    Results come back in argument order. When several tasks failed before
    cancellation took effect, the first one in argument order is raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return [task.result() for task in tasks]


class ChatOrchestrator:
    def __init__(
        self,
        scraper: ScraperClient,
        classifier: ClassifierClient,
        cache: ResponseCache | None = None,
        *,
        default_limit: int = 5,
    ):
        self.scraper = scraper
        self.classifier = classifier
        self.cache = cache
        self.default_limit = default_limit

    @classmethod
    def from_settings(cls, settings: Settings, cache: ResponseCache | None = None) -> "ChatOrchestrator":
        if cache is None:
            cache = ResponseCache(build_store(settings), ttl=settings.cache_ttl_seconds)
        return cls(
            ScraperClient.from_settings(settings),
            ClassifierClient.from_settings(settings),
            cache,
            default_limit=settings.default_page_limit,
        )

    async def handle(
        self,
        message: str,
        history: Sequence[ChatMessage],
        page: int = 1,
        limit: int | None = None,
    ) -> ResponseEnvelope:
        """Answer one chat message, from cache when possible."""
        limit = self.default_limit if limit is None else limit
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive", {"page": page, "limit": limit})

        key = fingerprint(message, history, page, limit)
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                log_service.log_event("cache_hit", "Serving cached chat response", key=key)
                return cached

        run_id = uuid4().hex[:12]
        try:
            envelope = await self._run(run_id, message, history, page, limit)
        except AppError as exc:
            log_service.log_pipeline_step(run_id, OrchestratorState.FAILED.value, exc.to_dict())
            raise
        except Exception as exc:
            logger.opt(exception=exc).error(f"[{run_id}] Unhandled orchestrator failure")
            log_service.log_pipeline_step(
                run_id, OrchestratorState.FAILED.value, {"reason": type(exc).__name__}
            )
            raise InternalError(
                "Unexpected error while handling the chat request",
                {"reason": type(exc).__name__},
            ) from exc

        if self.cache is not None:
            try:
                await self.cache.set(key, envelope)
            except Exception:
                logger.opt(exception=True).warning(f"[{run_id}] Failed to cache chat response")
        log_service.log_pipeline_step(run_id, OrchestratorState.DONE.value, {"type": envelope.type})
        return envelope

    async def _stage(
        self,
        run_id: str,
        state: OrchestratorState,
        operation: Awaitable[T],
        wrap: type[AppError],
    ) -> T:
        """Await one stage call, converting foreign exceptions to ``wrap``."""
        try:
            return await operation
        except AppError:
            raise
        except Exception as exc:
            logger.opt(exception=exc).error(f"[{run_id}] Unexpected failure while {state.value}")
            raise wrap(
                f"Unexpected error while {state.value}",
                {"reason": type(exc).__name__},
            ) from exc

    async def _run(
        self,
        run_id: str,
        message: str,
        history: Sequence[ChatMessage],
        page: int,
        limit: int,
    ) -> ResponseEnvelope:
        log_service.log_pipeline_step(run_id, OrchestratorState.CLASSIFYING.value)
        analysis = await self._stage(
            run_id,
            OrchestratorState.CLASSIFYING,
            self.classifier.analyze(message, history),
            ClassifierError,
        )

        if isinstance(analysis, MessageResult):
            log_service.log_pipeline_step(run_id, OrchestratorState.DIRECT.value)
            return ResponseEnvelope(type="message", response=analysis.content)
        if not isinstance(analysis, FunctionCallResult):
            raise ClassifierError("Language model returned an unknown analysis result")

        name = analysis.function_name
        log_service.log_pipeline_step(
            run_id, OrchestratorState.DISPATCHING.value, {"function": name}
        )
        if name == ANALYZE_BUSINESS_QUERY:
            target = await self._dispatch_search(run_id, analysis.arguments, page, limit)
        elif name == EXTRACT_BUSINESS_INFO:
            target = self._dispatch_extract(analysis.arguments)
        else:
            raise ValidationError(f"Unsupported function: {name}", {"function": name})

        log_service.log_pipeline_step(
            run_id, OrchestratorState.EXTRACTING.value, {"url": target.url}
        )
        images: list[ScrapedImage] = []
        if target.url:
            info, images = await self._stage(
                run_id,
                OrchestratorState.EXTRACTING,
                gather_first_failure(
                    self.scraper.extract(target.url),
                    self.scraper.scrape_images(target.url),
                ),
                ExternalAPIError,
            )
            if target.ad_type in ("valpak", "clipper"):
                info = info.model_copy(update={"ad_preferences": AdPreferences(type=target.ad_type)})
        else:
            info = target.business_info

        log_service.log_pipeline_step(run_id, OrchestratorState.SUMMARIZING.value)
        business_data = {
            **info.to_payload(),
            "images": [image.model_dump(mode="json", by_alias=True) for image in images],
        }
        summary_history = list(history)
        if analysis.preceding_text:
            summary_history.append(ChatMessage(role="assistant", content=analysis.preceding_text))
        summary = await self._stage(
            run_id,
            OrchestratorState.SUMMARIZING,
            self.classifier.summarize(business_data, summary_history),
            ClassifierError,
        )

        log_service.log_pipeline_step(run_id, OrchestratorState.ASSEMBLING.value)
        return ResponseEnvelope(
            type="business_info",
            response=summary.content,
            data=info,
            images=tuple(images),
            pagination=target.pagination,
            alternative_results=target.alternatives,
            sections=dict(summary.sections),
        )

    async def _dispatch_search(
        self,
        run_id: str,
        arguments: dict[str, Any],
        page: int,
        limit: int,
    ) -> _Target:
        try:
            args = AnalyzeBusinessQueryArgs.model_validate(arguments)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid arguments for {ANALYZE_BUSINESS_QUERY}",
                validation_details(exc.errors()),
            ) from exc

        query = args.search_query()
        results = await self._stage(
            run_id,
            OrchestratorState.DISPATCHING,
            self.scraper.search(query),
            ExternalAPIError,
        )
        if not results:
            raise NotFoundError("No business information found", {"query": query})

        total = len(results)
        offset = (page - 1) * limit
        window = results[offset:offset + limit]
        if not window:
            raise NotFoundError(
                "No business information found",
                {"query": query, "page": page, "total": total},
            )

        return _Target(
            url=window[0].url,
            ad_type=args.ad_type,
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                has_more=offset + limit < total,
            ),
            alternatives=tuple(
                AlternativeResult(url=r.url, title=r.title, description=r.description)
                for r in window[1:]
            ),
        )

    def _dispatch_extract(self, arguments: dict[str, Any]) -> _Target:
        try:
            args = ExtractBusinessInfoArgs.model_validate(arguments)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid arguments for {EXTRACT_BUSINESS_INFO}",
                validation_details(exc.errors()),
            ) from exc

        if args.url:
            if not is_valid_url(args.url):
                raise ValidationError("Invalid URL", {"url": args.url})
            return _Target(url=args.url)
        return _Target(business_info=from_function_arguments(args.model_dump(exclude_none=True)))
