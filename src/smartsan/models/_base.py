"""Base model for smartsan records and wire payloads.

Every smartsan model inherits from :class:`SmartSanBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase wire keys map
  automatically to snake_case fields (and back on ``to_wire``).
* A ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default is used.
* Frozen instances: stored records are replaced, never mutated in place.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import uuid4

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from smartsan.ingestion.normalize import is_sentinel, parse_timestamp


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


UtcDatetime = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Datetime coerced from epoch seconds/ms or ISO-8601, always UTC-aware."""


class SmartSanBaseModel(BaseModel):
    """Base for smartsan models.

    Handles:
    * camelCase <-> snake_case via ``alias_generator=to_camel``
    * sentinel values (``""``, ``"--"``, NaN) dropped so the field default is used
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_sentinels(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if not is_sentinel(value)}

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
