"""
Chat Message Shapes and Question Extraction

Messages arriving from the chat layer come in three shapes, modelled as a
tagged union:

- PlainText:        ``{"content": "..."}``
- StructuredParts:  ``{"parts": ["...", {"type": "text", "text": "..."}, ...]}``
- OpaqueObject:     ``{"content": {...}}`` (any non-string content)

``extract_message_content`` is total over the union (and over raw dicts and
``None``): it always returns a string and never raises.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field


class PlainText(BaseModel):
    kind: Literal["plain_text"] = "plain_text"
    role: Optional[str] = None
    text: str


class StructuredParts(BaseModel):
    kind: Literal["structured_parts"] = "structured_parts"
    role: Optional[str] = None
    parts: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)


class OpaqueObject(BaseModel):
    kind: Literal["opaque_object"] = "opaque_object"
    role: Optional[str] = None
    content: Any = None


Message = Annotated[
    Union[PlainText, StructuredParts, OpaqueObject],
    Field(discriminator="kind"),
]

_MESSAGE_TYPES = (PlainText, StructuredParts, OpaqueObject)


def parse_message(raw: Any) -> Optional[Message]:
    """
    Convert a duck-typed chat message into the tagged union.

    Precedence: string ``content``, then a ``parts`` list, then any other
    non-null ``content``. Returns None when nothing usable is present.
    """
    if isinstance(raw, _MESSAGE_TYPES):
        return raw
    if isinstance(raw, str):
        return PlainText(text=raw)
    if not isinstance(raw, dict):
        return None

    role = raw.get("role") if isinstance(raw.get("role"), str) else None
    content = raw.get("content")
    parts = raw.get("parts")

    if isinstance(content, str):
        return PlainText(role=role, text=content)
    if isinstance(parts, list):
        return StructuredParts(
            role=role,
            parts=[p for p in parts if isinstance(p, (str, dict))],
        )
    if content is not None:
        return OpaqueObject(role=role, content=content)
    return None


def _part_text(part: Union[str, Dict[str, Any]]) -> Optional[str]:
    if isinstance(part, str):
        return part
    if part.get("type") != "text":
        return None
    value = part.get("text") or part.get("content") or ""
    return value if isinstance(value, str) else ""


def extract_message_content(message: Any) -> str:
    """Return the flat text of one message; empty string when there is none."""
    parsed = parse_message(message)

    if isinstance(parsed, PlainText):
        return parsed.text
    if isinstance(parsed, StructuredParts):
        texts = [t for t in (_part_text(p) for p in parsed.parts) if t is not None]
        return " ".join(texts).strip()
    if isinstance(parsed, OpaqueObject):
        try:
            return json.dumps(parsed.content, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return ""
    return ""


def latest_question(messages: Optional[Sequence[Any]]) -> str:
    """Extract the text of the most recent message in a conversation."""
    if not messages:
        return ""
    return extract_message_content(messages[-1])
