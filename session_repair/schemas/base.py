"""
Shared Pydantic base models.

Layering:
- StrictModel: results and manifests this tool produces (fail-fast on unknown fields)
- PermissiveModel: documents read from the store, which belong to another
  application and carry fields this tool does not model
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, TypeAlias

import pydantic


class StrictModel(pydantic.BaseModel):
    """
    Strict model for everything this tool produces.

    Uses extra='forbid' to reject unknown fields - any field not modeled
    causes immediate validation failure (fail-fast).
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',  # Reject unknown fields (fail-fast)
        strict=True,  # Strict type coercion
        frozen=True,  # Immutable after creation
    )


class PermissiveModel(pydantic.BaseModel):
    """
    Permissive model for store documents.

    Symmetry with StrictModel:
    - StrictModel: extra='forbid' (rejects unknown fields)
    - PermissiveModel: extra='allow' (accepts unknown fields)

    Store documents are written by the front-end application and gain fields
    over time. Only the fields the repair engine reasons about are typed.
    """

    model_config = pydantic.ConfigDict(
        extra='allow',  # Accept unknown fields (graceful fallback)
        strict=True,  # Strict type coercion for known fields
        frozen=True,  # Immutable after creation
    )

    def get_extra_fields(self) -> dict[str, object]:
        """Get extra fields captured by this permissive model."""
        return dict(self.__pydantic_extra__) if self.__pydantic_extra__ else {}


JsonDatetime: TypeAlias = Annotated[datetime, pydantic.Field(strict=False)]
"""Pydantic-enhanced datetime for JSON serialization (allows string->datetime conversion)."""

PathStr: TypeAlias = str
"""A filesystem path (file or directory) as a string."""
