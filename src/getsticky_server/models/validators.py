"""Shared Pydantic types and validators for reuse across models.

Centralises slug normalisation, finite-number constraints, identifier
constraints, and Literal enums so every model speaks the same language.
"""

from __future__ import annotations

import math
import re
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, Field

# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

NodeKind = Literal["conversation", "richtext", "diagram", "terminal"]
ContextSource = Literal["user", "agent", "codebase", "diagram"]
TurnRole = Literal["user", "assistant"]

RESPONSE_EDGE_LABEL = "response"


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------


def _require_finite(v: float) -> float:
    if math.isnan(v) or math.isinf(v):
        raise ValueError("must be a finite number")
    return v


FiniteFloat = Annotated[float, AfterValidator(_require_finite)]
"""Float that rejects NaN and ±Inf, for canvas coordinates."""

PositiveFloat = Annotated[float, AfterValidator(_require_finite), Field(gt=0.0)]
"""Finite float > 0, used for zoom factors."""


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------

EntityId = Annotated[str, Field(min_length=1, max_length=128)]
"""Non-empty opaque identifier (node, edge, board, project)."""

DisplayName = Annotated[str, Field(min_length=1, max_length=200)]

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")
_SLUG_STRIP = re.compile(r"[^a-z0-9_-]+")


def slugify(v: Any) -> str:
    """Turn a display name into a URL-safe slug.

    * ``"My Board"`` → ``"my-board"``
    * ``"  Q3 / planning!! "`` → ``"q3-planning"``
    * ``""`` → ``"board"``
    """
    text = str(v or "").strip().lower()
    text = _SLUG_STRIP.sub("-", text).strip("-_")
    return text[:64] or "board"


def is_valid_slug(v: str) -> bool:
    return bool(_SLUG_RE.match(v))


def _check_slug(v: str) -> str:
    if not is_valid_slug(v):
        raise ValueError("slug must be 1-64 chars of a-z, 0-9, '-' or '_' and start with a letter or digit")
    return v


Slug = Annotated[str, AfterValidator(_check_slug)]
