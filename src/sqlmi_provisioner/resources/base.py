"""Common fields of configured resources."""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

NAME_PATTERN = r"^[a-zA-Z0-9_]+$"


class Resource(BaseModel):
    """Desired settings only; the handler turns them into Azure calls."""

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]

    name: str = Field(pattern=NAME_PATTERN)

    @computed_field
    @property
    def address(self) -> str:
        """State key, e.g. ``sqlmi_transparent_data_encryption.main``."""
        return f"{self.resource_type}.{self.name}"
