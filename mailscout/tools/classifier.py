"""Language model client: message classification and report summarization."""
from __future__ import annotations

import json
import re
import time
from typing import Any, Sequence

import openai

from mailscout.config import Settings
from mailscout.errors import ClassifierError, RateLimitError, parse_retry_after
from mailscout.llm_client import client as llm_client, get_model
from mailscout.models.interfaces import (
    AnalysisResult,
    FunctionCallResult,
    MessageResult,
    SummaryResult,
)
from mailscout.retry import RetryPolicy, retryable
from mailscout.services import logger as log_service
from mailscout.services.prompt_store import render_prompt

CLASSIFIER_RETRYABLE_PATTERNS: tuple[str | re.Pattern[str], ...] = (
    "ECONNREFUSED",
    "ETIMEDOUT",
    "RateLimitError",
    re.compile(r"HTTP 429"),
    re.compile(r"HTTP 5\d\d"),
)

ANALYZE_BUSINESS_QUERY = "analyze_business_query"
EXTRACT_BUSINESS_INFO = "extract_business_info"

_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

FUNCTION_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": ANALYZE_BUSINESS_QUERY,
        "description": "Analyze user input to determine scraping strategy",
        "parameters": {
            "type": "object",
            "properties": {
                "business_name": _STRING,
                "location": _STRING,
                "ad_type": {"type": "string", "enum": ["valpak", "clipper"]},
                "specific_requirements": _STRING,
                "competitor_analysis": {"type": "boolean"},
                "market_research": {"type": "boolean"},
            },
            "required": ["business_name"],
        },
    },
    {
        "name": EXTRACT_BUSINESS_INFO,
        "description": "Extract structured business information with market analysis",
        "parameters": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Business website to extract from"},
                "business_details": {
                    "type": "object",
                    "properties": {
                        "name": _STRING,
                        "address": _STRING,
                        "phone": _STRING,
                        "hours": _STRING,
                        "business_type": _STRING,
                        "service_area": _STRING_LIST,
                    },
                    "required": ["name", "business_type"],
                },
                "branding": {
                    "type": "object",
                    "properties": {
                        "colors": _STRING_LIST,
                        "visual_style": _STRING,
                        "brand_voice": _STRING,
                    },
                },
                "target_audience": {
                    "type": "object",
                    "properties": {
                        "demographics": _STRING_LIST,
                        "interests": _STRING_LIST,
                        "income": _STRING,
                        "location": _STRING,
                    },
                },
                "market_analysis": {
                    "type": "object",
                    "properties": {
                        "competitors": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "name": _STRING,
                                    "strengths": _STRING_LIST,
                                    "weaknesses": _STRING_LIST,
                                },
                            },
                        },
                        "local_market": {
                            "type": "object",
                            "properties": {
                                "demographics": _STRING,
                                "competition_level": _STRING,
                                "trends": _STRING_LIST,
                            },
                        },
                    },
                },
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
                        "required": ["type", "description"],
                    },
                },
            },
            "required": ["business_details", "target_audience"],
        },
    },
]

TOOLS: list[dict[str, Any]] = [
    {"type": "function", "function": definition} for definition in FUNCTION_DEFINITIONS
]

SECTION_HEADINGS: tuple[str, ...] = (
    "Target Audience",
    "Competitive Advantage",
    "Offer Development",
    "Design Recommendations",
    "Campaign Timing",
)


def _heading_pattern(heading: str) -> re.Pattern[str]:
    words = heading.split()
    name = "(?:{}|{})".format(
        r"[ \t]+".join(re.escape(word) for word in words),
        r"[ \t]+".join(re.escape(word.upper()) for word in words),
    )
    # Headings start a line and are written in title or upper case. Either a
    # decorated line ("## 1. Target Audience Analysis", "**Campaign Timing**")
    # or a label ending in a colon ("Target Audience: ...").
    decorated = r"(?:#{1,6}[ \t]*(?:\d+[.)][ \t]*)?|\d+[.)][ \t]*|(?=[*_]))[*_]*"
    return re.compile(
        rf"^[ \t]*{decorated}{name}(?:[ \t]+\w+){{0,2}}[*_]*[ \t]*:?[*_]*[ \t]*$"
        rf"|^[ \t]*(?:#{{1,6}}[ \t]*)?(?:\d+[.)][ \t]*)?[*_]*{name}[*_]*[ \t]*:[*_]*",
        re.MULTILINE,
    )


_HEADING_PATTERNS = {heading: _heading_pattern(heading) for heading in SECTION_HEADINGS}


def extract_sections(text: str) -> dict[str, str]:
    """Split a report into the known sections.

    A section runs from its heading to the next located heading (or the end
    of the text). Headings that are not found map to an empty string.
    """
    located: dict[str, tuple[int, int]] = {}
    for heading, pattern in _HEADING_PATTERNS.items():
        match = pattern.search(text)
        if match:
            located[heading] = (match.start(), match.end())

    sections: dict[str, str] = {}
    for heading in SECTION_HEADINGS:
        if heading not in located:
            sections[heading] = ""
            continue
        start, body_start = located[heading]
        following = [other_start for other_start, _ in located.values() if other_start > start]
        end = max(min(following) if following else len(text), body_start)
        sections[heading] = text[body_start:end].strip().lstrip(":").strip()
    return sections


def _history_messages(history: Sequence[Any]) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    for item in history:
        if isinstance(item, dict):
            role, content = item.get("role"), item.get("content")
        else:
            role, content = getattr(item, "role", None), getattr(item, "content", None)
        if role in ("user", "assistant") and isinstance(content, str):
            messages.append({"role": role, "content": content})
    return messages


class ClassifierClient:
    """Retrying wrapper over an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        *,
        llm: Any | None = None,
        model: str | None = None,
        retry_policy: RetryPolicy | None = None,
        summary_max_tokens: int = 2000,
        summary_temperature: float = 0.7,
    ):
        self._llm = llm
        self.model = model or get_model()
        self.retry_policy = retry_policy or RetryPolicy(
            initial_delay=0.5,
            max_delay=8.0,
            retryable_patterns=CLASSIFIER_RETRYABLE_PATTERNS,
        )
        self.summary_max_tokens = summary_max_tokens
        self.summary_temperature = summary_temperature

    @classmethod
    def from_settings(cls, settings: Settings, llm: Any | None = None) -> "ClassifierClient":
        return cls(
            llm=llm,
            model=settings.openai_model,
            retry_policy=RetryPolicy(
                max_attempts=settings.classifier_retry_max_attempts,
                initial_delay=settings.classifier_retry_initial_delay,
                max_delay=settings.classifier_retry_max_delay,
                retryable_patterns=CLASSIFIER_RETRYABLE_PATTERNS,
            ),
            summary_max_tokens=settings.summary_max_tokens,
            summary_temperature=settings.summary_temperature,
        )

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = llm_client()
        return self._llm

    async def _complete(self, caller: str, **kwargs: Any) -> Any:
        t0 = time.monotonic()

        def failed(reason: str) -> None:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=reason,
            )

        try:
            response = await self.llm.chat.completions.create(model=self.model, **kwargs)
        except openai.APITimeoutError as exc:
            failed("timeout")
            raise ClassifierError("Language model request timed out (ETIMEDOUT)") from exc
        except openai.APIConnectionError as exc:
            failed("connection")
            raise ClassifierError("Language model connection failed (ECONNREFUSED)") from exc
        except openai.RateLimitError as exc:
            failed("rate_limited")
            raise RateLimitError(
                "Language model rate limit exceeded (HTTP 429)",
                retry_after=parse_retry_after(exc.response.headers.get("retry-after")),
            ) from exc
        except openai.APIStatusError as exc:
            failed(f"HTTP {exc.status_code}")
            raise ClassifierError(
                f"Language model responded with HTTP {exc.status_code}",
                {"status": exc.status_code},
            ) from exc
        except openai.OpenAIError as exc:
            failed(type(exc).__name__)
            raise ClassifierError(
                "Language model request failed", {"reason": type(exc).__name__}
            ) from exc

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        try:
            return response.choices[0].message
        except (AttributeError, IndexError, TypeError) as exc:
            raise ClassifierError("Language model returned a malformed response") from exc

    @retryable(label="classifier.analyze")
    async def analyze(self, message: str, history: Sequence[Any]) -> AnalysisResult:
        """Ask the model to answer directly or pick one of the business functions."""
        reply = await self._complete(
            "classifier.analyze",
            messages=[
                {"role": "system", "content": render_prompt("classifier.system_prompt")},
                *_history_messages(history),
                {"role": "user", "content": message},
            ],
            tools=TOOLS,
            tool_choice="auto",
        )

        name, raw_arguments = None, None
        tool_calls = getattr(reply, "tool_calls", None) or []
        if tool_calls:
            function = getattr(tool_calls[0], "function", None)
            name = getattr(function, "name", None)
            raw_arguments = getattr(function, "arguments", None)
        elif getattr(reply, "function_call", None) is not None:
            name = getattr(reply.function_call, "name", None)
            raw_arguments = getattr(reply.function_call, "arguments", None)

        content = getattr(reply, "content", None)
        if name is None:
            return MessageResult(content=content if isinstance(content, str) else "")

        try:
            arguments = json.loads(raw_arguments or "{}")
        except (TypeError, json.JSONDecodeError) as exc:
            raise ClassifierError(
                "Language model returned invalid function arguments",
                {"function": name},
            ) from exc
        if not isinstance(arguments, dict):
            raise ClassifierError(
                "Language model function arguments must be a JSON object",
                {"function": name},
            )

        return FunctionCallResult(
            function_name=name,
            arguments=arguments,
            preceding_text=content if isinstance(content, str) and content else None,
        )

    @retryable(label="classifier.summarize")
    async def summarize(
        self, business_data: dict[str, Any], history: Sequence[Any]
    ) -> SummaryResult:
        """Turn a business record into a sectioned campaign report."""
        reply = await self._complete(
            "classifier.summarize",
            messages=[
                {"role": "system", "content": render_prompt("summarizer.system_prompt")},
                *_history_messages(history),
                {
                    "role": "user",
                    "content": render_prompt(
                        "summarizer.user_prompt",
                        business_data=json.dumps(business_data, indent=2, ensure_ascii=False),
                    ),
                },
            ],
            temperature=self.summary_temperature,
            max_tokens=self.summary_max_tokens,
        )
        content = getattr(reply, "content", None)
        content = content if isinstance(content, str) else ""
        return SummaryResult(content=content, sections=extract_sections(content))
