from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(frozen=True, slots=True)
class SearchResult:
    url: str
    title: str
    description: str
    content: str | None = None


@dataclass(frozen=True, slots=True)
class MessageResult:
    content: str
    type: Literal["message"] = "message"


@dataclass(frozen=True, slots=True)
class FunctionCallResult:
    function_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    preceding_text: str | None = None
    type: Literal["function_call"] = "function_call"


AnalysisResult = Union[MessageResult, FunctionCallResult]


@dataclass(frozen=True, slots=True)
class SummaryResult:
    content: str
    sections: dict[str, str] = field(default_factory=dict)
