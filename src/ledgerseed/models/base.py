"""Base Pydantic models with JSON record serialization."""

from datetime import datetime, timezone
from typing import Any, Self

from pydantic import BaseModel as PydanticBaseModel, ConfigDict
from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class BaseModel(PydanticBaseModel):
    """Base model for everything that is persisted or reported.

    Records are plain JSON-compatible dicts: enums become their values and
    datetimes become ISO strings.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Serialize model to a JSON-compatible dict."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        """Deserialize a record produced by ``to_record``.

        ISO strings are parsed back into datetimes by field type.
        """
        return cls.model_validate(record)
