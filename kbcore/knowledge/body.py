# ==============================
# Record Body Shapes
# ==============================
"""
Knowledge bodies arrive loosely typed. They are recognized as one of a small
set of known shapes and normalized to a canonical {title, text} pair for
indexing and dedup. The original payload is stored verbatim for display.

Known shapes (first match wins):
- title + content   ("text" or "content" carries the prose)
- question + answer
- name + description

Anything else is rejected with ValidationError.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kbcore.errors import ValidationError

MAX_FLATTEN_DEPTH = 5


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("must be a string")
    value = value.strip()
    return value or None


class TitleContentBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["title_content"] = "title_content"
    title: str
    text: Optional[str] = None
    content: Optional[str] = None
    code: Optional[Union[str, List[str]]] = None
    tags: List[str] = Field(default_factory=list)

    _strip = field_validator("title", "text", "content", mode="before")(_non_blank)

    def canonical(self) -> "CanonicalText":
        return CanonicalText(title=self.title, text=self.text or self.content or "")


class QuestionAnswerBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["question_answer"] = "question_answer"
    question: str
    answer: str
    tags: List[str] = Field(default_factory=list)

    _strip = field_validator("question", "answer", mode="before")(_non_blank)

    def canonical(self) -> "CanonicalText":
        return CanonicalText(title=self.question, text=self.answer)


class NameDescriptionBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["name_description"] = "name_description"
    name: str
    description: str
    tags: List[str] = Field(default_factory=list)

    _strip = field_validator("name", "description", mode="before")(_non_blank)

    def canonical(self) -> "CanonicalText":
        return CanonicalText(title=self.name, text=self.description)


BodyShape = Union[TitleContentBody, QuestionAnswerBody, NameDescriptionBody]


class CanonicalText(BaseModel):
    title: str
    text: str = ""

    def joined(self) -> str:
        return f"{self.title} {self.text}".strip()


def _recognize(raw: Dict[str, Any]) -> Optional[type]:
    if "title" in raw and ("text" in raw or "content" in raw):
        return TitleContentBody
    if "question" in raw and "answer" in raw:
        return QuestionAnswerBody
    if "name" in raw and "description" in raw:
        return NameDescriptionBody
    return None


def parse_body(raw: Any) -> BodyShape:
    if not isinstance(raw, dict):
        raise ValidationError("Knowledge body must be an object.", field="body")
    shape = _recognize(raw)
    if shape is None:
        raise ValidationError(
            "Knowledge body needs a title and text (or question/answer, or name/description).",
            field="body",
            details={"keys": sorted(str(k) for k in raw.keys())},
        )
    payload = {k: v for k, v in raw.items() if k != "kind"}
    try:
        body = shape.model_validate(payload)
    except Exception as e:  # pydantic.ValidationError or ValueError from validators
        raise ValidationError(f"Invalid knowledge body: {e}", field="body") from e
    canonical = body.canonical()
    if not canonical.text:
        raise ValidationError("Knowledge body text must not be empty.", field="body")
    return body


def normalize_body(raw: Any) -> CanonicalText:
    return parse_body(raw).canonical()


def flatten_text(raw: Dict[str, Any]) -> str:
    """
    Searchable text for a body: canonical title and text first, then every
    other string leaf (code samples, tags, nested notes) in key order.
    Depth-bounded; non-string scalars are ignored.
    """
    parts: List[str] = []
    consumed = set()
    shape = _recognize(raw) if isinstance(raw, dict) else None
    if shape is not None:
        try:
            canonical = normalize_body(raw)
            parts.extend([canonical.title, canonical.text])
            if shape is TitleContentBody:
                consumed.update({"title", "text", "content"})
            elif shape is QuestionAnswerBody:
                consumed.update({"question", "answer"})
            else:
                consumed.update({"name", "description"})
        except ValidationError:
            consumed.clear()

    def _walk(value: Any, depth: int) -> None:
        if depth > MAX_FLATTEN_DEPTH:
            return
        if isinstance(value, str):
            if value.strip():
                parts.append(value.strip())
        elif isinstance(value, dict):
            for key in sorted(value.keys(), key=str):
                _walk(value[key], depth + 1)
        elif isinstance(value, (list, tuple)):
            for item in value:
                _walk(item, depth + 1)

    if isinstance(raw, dict):
        for key in sorted(raw.keys(), key=str):
            if key in consumed or key == "kind":
                continue
            _walk(raw[key], 1)
    return " ".join(p for p in parts if p)


def display_title(raw: Dict[str, Any]) -> str:
    for key in ("title", "question", "name"):
        value = raw.get(key) if isinstance(raw, dict) else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""
