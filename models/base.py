"""
Shared pydantic base for everything that crosses the gateway.

The wire format is camelCase JSON; Python code uses snake_case attributes.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dump as a JSON-ready camelCase dict, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
