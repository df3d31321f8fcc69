"""Shared pydantic base for records exchanged with configuration services."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model that reads camelCase keys and dumps them with ``by_alias=True``.

    Attribute names stay snake_case; unknown keys are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        """Dump as a camelCase dict without unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
