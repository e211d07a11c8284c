"""Pydantic model for the managed unit's persisted state.

Field names on the wire match the resource schema the host orchestrator
stores: working_dir, args, id.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, StrictStr, field_validator


class ManagedUnitRecord(BaseModel):
    """State of one `pteraform_apply` resource.

    `id` is computed: the SHA-256 of the state artifact observed at the
    end of the last successful create, update or read. Only the import path
    sets it from outside.
    """

    model_config = {"extra": "forbid", "frozen": True}

    working_dir: str | None = None
    args: list[StrictStr] = Field(default_factory=list)
    id: str | None = None

    @field_validator("working_dir")
    @classmethod
    def validate_working_dir(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("working_dir must not be blank")
        return v

    @classmethod
    def imported(cls, identity: str) -> ManagedUnitRecord:
        """Build a record holding only an externally supplied identity."""
        return cls(id=identity)

    def with_identity(self, identity: str) -> ManagedUnitRecord:
        """Return a copy of this record carrying a freshly resolved identity."""
        return self.model_copy(update={"id": identity})

    def to_state(self) -> dict[str, Any]:
        """Serialize using the resource schema's attribute names."""
        return self.model_dump()
