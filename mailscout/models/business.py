"""Normalized business record returned to callers.

Every string defaults to ``""`` and every list to ``[]`` so a partially
extracted record still has the full ``details``/``branding``/``marketing``
shape. ``market_analysis`` and ``ad_preferences`` are optional.
"""
from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class BusinessDetails(CamelModel):
    name: str = ""
    address: str = ""
    phone: str = ""
    hours: str = ""
    website: str = ""
    social_media: list[str] = Field(default_factory=list)
    business_type: str = ""
    service_area: list[str] = Field(default_factory=list)
    year_established: str = ""
    employee_count: str = ""


class Branding(CamelModel):
    colors: list[str] = Field(default_factory=list)
    logo: str = ""
    images: list[str] = Field(default_factory=list)
    brand_voice: str = ""
    visual_style: str = ""


class TargetAudience(CamelModel):
    demographics: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    income: str = ""
    location: str = ""


class Promotion(CamelModel):
    type: str = ""
    description: str = ""
    value: str = ""
    expiration: str = ""
    conditions: str = ""


class Marketing(CamelModel):
    target_audience: TargetAudience = Field(default_factory=TargetAudience)
    promotions: list[Promotion] = Field(default_factory=list)
    key_messages: list[str] = Field(default_factory=list)
    unique_selling_points: list[str] = Field(default_factory=list)


class Competitor(CamelModel):
    name: str = ""
    website: str = ""
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    marketing_tactics: list[str] = Field(default_factory=list)


class LocalMarketData(CamelModel):
    demographics: str = ""
    household_income: str = ""
    competition_level: str = ""
    market_trends: list[str] = Field(default_factory=list)
    seasonal_factors: list[str] = Field(default_factory=list)


class CustomerSentiment(CamelModel):
    rating: float = 0.0
    review_count: int = 0
    common_praise: list[str] = Field(default_factory=list)
    common_complaints: list[str] = Field(default_factory=list)


class MarketAnalysis(CamelModel):
    competitors: list[Competitor] = Field(default_factory=list)
    local_market_data: LocalMarketData = Field(default_factory=LocalMarketData)
    customer_sentiment: CustomerSentiment = Field(default_factory=CustomerSentiment)


class RecommendedElements(CamelModel):
    headlines: list[str] = Field(default_factory=list)
    call_to_action: list[str] = Field(default_factory=list)
    offers: list[str] = Field(default_factory=list)
    visual_elements: list[str] = Field(default_factory=list)


class AdPreferences(CamelModel):
    type: Literal["valpak", "clipper"] = "valpak"
    size: str = ""
    specifications: dict[str, Any] = Field(default_factory=dict)
    recommended_elements: RecommendedElements = Field(default_factory=RecommendedElements)


class BusinessInfo(CamelModel):
    details: BusinessDetails = Field(default_factory=BusinessDetails)
    branding: Branding = Field(default_factory=Branding)
    marketing: Marketing = Field(default_factory=Marketing)
    market_analysis: MarketAnalysis | None = None
    ad_preferences: AdPreferences | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready camelCase dict; absent optional sections are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ScrapedImage(CamelModel):
    src: str
    alt: str = ""
    width: int = 0
    height: int = 0


# --- Coercion helpers shared by the provider and function-call mappers ---


def as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [as_str(item) for item in value if as_str(item)]


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return int(as_float(value))


def as_float(value: Any) -> float:
    """Finite float or ``0.0``; ``nan``, ``inf`` and overflowing input count as missing."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0.0
    if not isinstance(value, (int, float)):
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def build_promotions(value: Any) -> list[Promotion]:
    if not isinstance(value, list):
        return []
    promotions: list[Promotion] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        promotion = Promotion(
            type=as_str(item.get("type")),
            description=as_str(item.get("description")),
            value=as_str(item.get("value")),
            expiration=as_str(item.get("expiration")),
            conditions=as_str(item.get("conditions")),
        )
        if promotion.type or promotion.description:
            promotions.append(promotion)
    return promotions


def build_target_audience(value: Any) -> TargetAudience:
    # Providers sometimes collapse the audience to a single sentence.
    if isinstance(value, str):
        return TargetAudience(demographics=as_str_list(value))
    raw = as_dict(value)
    return TargetAudience(
        demographics=as_str_list(raw.get("demographics")),
        interests=as_str_list(raw.get("interests")),
        income=as_str(raw.get("income")),
        location=as_str(raw.get("location")),
    )


def build_market_analysis(value: Any) -> MarketAnalysis | None:
    raw = as_dict(value)
    if not raw:
        return None
    competitors = [
        Competitor(
            name=as_str(item.get("name")),
            website=as_str(item.get("website")),
            strengths=as_str_list(item.get("strengths")),
            weaknesses=as_str_list(item.get("weaknesses")),
            marketing_tactics=as_str_list(
                item.get("marketing_tactics", item.get("marketingTactics"))
            ),
        )
        for item in raw.get("competitors") or []
        if isinstance(item, dict)
    ]
    local = as_dict(raw.get("local_market") or raw.get("local_market_data"))
    sentiment = as_dict(raw.get("customer_sentiment"))
    return MarketAnalysis(
        competitors=competitors,
        local_market_data=LocalMarketData(
            demographics=as_str(local.get("demographics")),
            household_income=as_str(local.get("household_income")),
            competition_level=as_str(local.get("competition_level")),
            market_trends=as_str_list(local.get("trends", local.get("market_trends"))),
            seasonal_factors=as_str_list(local.get("seasonal_factors")),
        ),
        customer_sentiment=CustomerSentiment(
            rating=as_float(sentiment.get("rating")),
            review_count=as_int(sentiment.get("review_count")),
            common_praise=as_str_list(sentiment.get("common_praise")),
            common_complaints=as_str_list(sentiment.get("common_complaints")),
        ),
    )


def from_function_arguments(arguments: dict[str, Any], *, ad_type: str | None = None) -> BusinessInfo:
    """Build a BusinessInfo from ``extract_business_info`` call arguments."""
    details = as_dict(arguments.get("business_details"))
    branding = as_dict(arguments.get("branding"))
    return BusinessInfo(
        details=BusinessDetails(
            name=as_str(details.get("name")),
            address=as_str(details.get("address")),
            phone=as_str(details.get("phone")),
            hours=as_str(details.get("hours")),
            website=as_str(arguments.get("url") or details.get("website")),
            business_type=as_str(details.get("business_type")),
            service_area=as_str_list(details.get("service_area")),
        ),
        branding=Branding(
            colors=as_str_list(branding.get("colors")),
            brand_voice=as_str(branding.get("brand_voice")),
            visual_style=as_str(branding.get("visual_style")),
        ),
        marketing=Marketing(
            target_audience=build_target_audience(arguments.get("target_audience")),
            promotions=build_promotions(arguments.get("promotions")),
        ),
        market_analysis=build_market_analysis(arguments.get("market_analysis")),
        ad_preferences=AdPreferences(type=ad_type) if ad_type in ("valpak", "clipper") else None,
    )
