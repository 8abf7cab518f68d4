from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from mailscout.models.business import BusinessInfo, as_float, as_int, from_function_arguments
from mailscout.models.schemas import (
    AnalyzeBusinessQueryArgs,
    ChatRequest,
    ExtractBusinessInfoArgs,
    ResponseEnvelope,
)


def test_business_info_defaults_are_never_null():
    payload = BusinessInfo().to_payload()

    assert payload["details"]["name"] == ""
    assert payload["details"]["socialMedia"] == []
    assert payload["marketing"]["targetAudience"]["demographics"] == []
    assert "marketAnalysis" not in payload
    assert "adPreferences" not in payload


def test_from_function_arguments_maps_nested_sections():
    info = from_function_arguments(
        {
            "url": "https://greenleaf.example.com",
            "business_details": {"name": "Green Leaf", "business_type": "Cafe", "service_area": ["Downtown"]},
            "branding": {"colors": ["green"], "brand_voice": "Friendly"},
            "target_audience": "Remote workers",
            "market_analysis": {
                "competitors": [{"name": "Bean There", "strengths": ["Price"]}],
                "local_market": {"competition_level": "High", "trends": ["Oat milk"]},
            },
        },
        ad_type="valpak",
    )

    payload = info.to_payload()
    assert payload["details"]["website"] == "https://greenleaf.example.com"
    assert payload["details"]["serviceArea"] == ["Downtown"]
    assert payload["marketing"]["targetAudience"]["demographics"] == ["Remote workers"]
    assert payload["marketAnalysis"]["competitors"][0]["name"] == "Bean There"
    assert payload["marketAnalysis"]["localMarketData"]["marketTrends"] == ["Oat milk"]
    assert payload["adPreferences"]["type"] == "valpak"


def test_search_query_joins_name_and_location():
    assert AnalyzeBusinessQueryArgs(business_name=" Tony's ", location="Chicago").search_query() == "Tony's Chicago"
    assert AnalyzeBusinessQueryArgs(business_name="Tony's").search_query() == "Tony's"


def test_blank_business_name_is_rejected():
    with pytest.raises(PydanticValidationError):
        AnalyzeBusinessQueryArgs(business_name="   ")


def test_extract_args_need_url_or_name():
    assert ExtractBusinessInfoArgs(url="https://a.com").url == "https://a.com"
    assert ExtractBusinessInfoArgs(business_details={"name": "A"}).business_details == {"name": "A"}
    with pytest.raises(PydanticValidationError):
        ExtractBusinessInfoArgs(business_details={"name": " "})


def test_chat_request_limits_message_length():
    with pytest.raises(PydanticValidationError):
        ChatRequest(message="x" * 1001)
    assert ChatRequest(message="x" * 1000).history == []


def test_envelope_payload_round_trip():
    envelope = ResponseEnvelope(
        type="business_info",
        response="Report",
        data=BusinessInfo(),
        images=({"src": "https://a.com/x.jpg"},),
        alternative_results=({"url": "https://b.com", "title": "B", "description": "b"},),
    )

    payload = envelope.to_payload()

    assert payload["images"] == [{"src": "https://a.com/x.jpg", "alt": "", "width": 0, "height": 0}]
    assert payload["alternativeResults"][0]["title"] == "B"
    assert ResponseEnvelope.from_payload(payload) == envelope


def test_numeric_helpers_treat_non_finite_values_as_missing():
    for value in ("1e999", "inf", "-inf", "nan", float("inf"), float("nan")):
        assert as_int(value) == 0
        assert as_float(value) == 0.0
    assert as_int("300") == 300
    assert as_int(True) == 0
    assert as_float("4.5") == 4.5
    assert as_float(10**400) == 0.0
