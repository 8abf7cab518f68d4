from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mailscout.models.business import BusinessInfo, CamelModel, ScrapedImage


# --- Requests ---


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    history: list[ChatMessage] = Field(default_factory=list)


class ExportRequest(BaseModel):
    history: list[ChatMessage]
    format: Literal["json", "markdown", "text"]


# --- Responses ---


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    has_more: bool


class AlternativeResult(CamelModel):
    url: str
    title: str
    description: str


class ResponseEnvelope(CamelModel):
    """Final payload of one chat request; cached and returned as-is."""

    type: Literal["message", "business_info"]
    response: str
    data: BusinessInfo | None = None
    images: tuple[ScrapedImage, ...] = ()
    pagination: Pagination | None = None
    alternative_results: tuple[AlternativeResult, ...] = ()
    sections: dict[str, str] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ResponseEnvelope":
        return cls.model_validate(payload)


class ExportResponse(BaseModel):
    data: str


class HealthResponse(BaseModel):
    status: str
    service: str


# --- Function-call arguments emitted by the classifier ---


class AnalyzeBusinessQueryArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    business_name: str = Field(min_length=1)
    location: str | None = None
    ad_type: str | None = None
    specific_requirements: str | None = None
    competitor_analysis: bool | None = None
    market_research: bool | None = None

    def search_query(self) -> str:
        if self.location:
            return f"{self.business_name} {self.location}"
        return self.business_name


class ExtractBusinessInfoArgs(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    url: str | None = None
    business_details: dict[str, Any] | None = None
    branding: dict[str, Any] | None = None
    target_audience: dict[str, Any] | str | None = None
    market_analysis: dict[str, Any] | None = None
    promotions: list[dict[str, Any]] | None = None

    @model_validator(mode="after")
    def _require_target(self) -> "ExtractBusinessInfoArgs":
        name = (self.business_details or {}).get("name")
        if not self.url and not (isinstance(name, str) and name.strip()):
            raise ValueError("either url or business_details.name is required")
        return self


def validation_details(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Flatten pydantic error dicts into ``{path, message}`` pairs."""
    return [
        {
            "path": ".".join(str(part) for part in err.get("loc", ())),
            "message": str(err.get("msg", "")),
        }
        for err in errors
    ]
