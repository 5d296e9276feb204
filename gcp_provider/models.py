"""
Request and record models exchanged with the engine.

Fields are optional at the model level so that a missing field is reported by
the operation with a message naming it, rather than as a schema error.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionRequest(BaseModel):
    """Request to invoke an action."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    active_snap_id: str | None = Field(default=None, alias="activeSnapId")
    param: dict[str, Any] | None = None
    connection_info: Any = Field(default=None, alias="connectionInfo")


class TriggerRecord(BaseModel):
    """Identity of a registered trigger. Owned by the engine."""

    url: str | None = None
    id: str | None = None


class TriggerRequest(BaseModel):
    """Request to create or delete a trigger."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str | None = Field(default=None, alias="userId")
    active_snap_id: str | None = Field(default=None, alias="activeSnapId")
    param: dict[str, Any] | None = None
    connection_info: Any = Field(default=None, alias="connectionInfo")
    trigger_data: TriggerRecord | None = Field(default=None, alias="triggerData")
