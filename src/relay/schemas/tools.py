"""Pydantic models describing tool servers advertised by the backend."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CapabilitySpec(BaseModel):
    """A single callable capability exposed by a tool server."""

    name: str = Field(..., min_length=1)
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class ToolServerDescriptor(BaseModel):
    """Tool server connection forwarded to the completion backend."""

    url: str = ""
    capability_specs: List[CapabilitySpec] = Field(
        default_factory=list,
        validation_alias=AliasChoices("specs", "capabilitySpecs", "capability_specs"),
        serialization_alias="specs",
    )

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def is_usable(self) -> bool:
        """Only servers with an address and at least one capability are kept."""

        return bool(self.url.strip()) and bool(self.capability_specs)

    def to_upstream(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


__all__ = ["CapabilitySpec", "ToolServerDescriptor"]
