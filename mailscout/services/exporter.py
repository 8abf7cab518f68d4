"""Conversation export in json, markdown or plain text."""
from __future__ import annotations

import json
from typing import Sequence

from mailscout.errors import ValidationError
from mailscout.models.schemas import ChatMessage

EXPORT_FORMATS = ("json", "markdown", "text")


def format_history(history: Sequence[ChatMessage], fmt: str) -> str:
    if fmt == "json":
        return json.dumps(
            [{"role": m.role, "content": m.content} for m in history],
            indent=2,
            ensure_ascii=False,
        )
    if fmt == "markdown":
        return "\n".join(f"### {m.role.capitalize()}\n{m.content}\n" for m in history)
    if fmt == "text":
        return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in history)
    raise ValidationError(f"Unsupported export format: {fmt}", {"supported": list(EXPORT_FORMATS)})
