"""Input parsing that turns pydantic failures into ``InvalidInputError``."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from luxicle.errors import InvalidInputError

M = TypeVar("M", bound=BaseModel)


def _describe(exc: ValidationError) -> str:
    """Render the first validation error as 'field: message'."""
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    return f"{loc}: {message}" if loc else message


def parse_input(model: type[M], data: M | Mapping[str, Any]) -> M:
    """Validate a payload against a model.

    Raises:
        InvalidInputError: If the payload does not satisfy the model.
    """
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidInputError(_describe(e)) from e


def parse_patch(model: type[M], data: M | Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial update and return only the fields that were set."""
    return parse_input(model, data).model_dump(exclude_unset=True)


def require(value: str | None, name: str) -> str:
    """Reject missing or blank identifiers before any round trip."""
    if value is None or not str(value).strip():
        msg = f"{name} must be provided"
        raise InvalidInputError(msg)
    return value
