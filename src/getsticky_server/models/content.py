"""Kind-specific node content payloads.

Each node kind has its own content model. Unknown keys are kept because the
canvas stores layout hints and widget state next to the typed fields; the
typed fields themselves are validated on every write.

Merge updates are one level deep: top-level keys in the patch overwrite the
stored keys, keys absent from the patch survive, and nested objects are
replaced wholesale rather than merged recursively.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..utils.errors import InvalidRequestError
from .validators import FiniteFloat, NodeKind


class Position(BaseModel):
    x: FiniteFloat
    y: FiniteFloat


class _NodeContent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ConversationContent(_NodeContent):
    """A question/answer turn, usually produced by the query orchestrator."""

    question: str = ""
    response: str = ""
    position: Position | None = None
    metadata: dict[str, Any] | None = None


class RichTextContent(_NodeContent):
    tiptap_json: dict[str, Any] = Field(default_factory=dict, alias="tiptapJSON")
    plain_text: str = Field(default="", alias="plainText")


class DiagramContent(_NodeContent):
    mermaid_syntax: str = Field(default="", alias="mermaidSyntax")
    metadata: dict[str, Any] | None = None
    comments: list[dict[str, Any]] = Field(default_factory=list)


class TerminalContent(_NodeContent):
    command: str = ""
    output: str = ""
    exit_code: int | None = Field(default=None, alias="exitCode")


CONTENT_MODELS: dict[str, type[_NodeContent]] = {
    "conversation": ConversationContent,
    "richtext": RichTextContent,
    "diagram": DiagramContent,
    "terminal": TerminalContent,
}


def _wire_keys(model: type[_NodeContent], payload: dict[str, Any]) -> dict[str, Any]:
    """Rename Python field names to their wire aliases; an explicit alias key wins."""
    renamed = dict(payload)
    for name, field in model.model_fields.items():
        if field.alias and field.alias != name and name in renamed:
            value = renamed.pop(name)
            renamed.setdefault(field.alias, value)
    return renamed


def parse_content(kind: NodeKind, payload: dict[str, Any] | None) -> _NodeContent:
    """Validate a raw payload against the content model for ``kind``."""
    model = CONTENT_MODELS.get(kind)
    if model is None:
        raise InvalidRequestError(f"Unknown node type: {kind}", field="type")
    try:
        return model.model_validate(_wire_keys(model, payload or {}))
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid {kind} content: {e.errors()[0]['msg']}", field="content") from e


def dump_content(content: _NodeContent) -> dict[str, Any]:
    """Serialise content using the wire (camelCase) field names."""
    return content.model_dump(by_alias=True, exclude_none=True)


def normalize_content(kind: NodeKind, payload: dict[str, Any] | None) -> dict[str, Any]:
    """Full replacement: validate ``payload`` and return its wire form."""
    return dump_content(parse_content(kind, payload))


def merge_content(kind: NodeKind, existing: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Kind-aware one-level merge of ``patch`` into ``existing``."""
    model = CONTENT_MODELS.get(kind)
    if model is not None:
        existing = _wire_keys(model, existing)
        patch = _wire_keys(model, patch)
    merged = {**existing, **patch}
    return dump_content(parse_content(kind, merged))
