from typing import Any, Literal

from pydantic import BaseModel, Field

RecordKind = Literal["user", "booking", "settings"]


class Envelope(BaseModel):
    dataType: str = ""
    payload: dict[str, Any] | None = None


class MutationOut(BaseModel):
    status: Literal["success", "error"]
    message: str = ""


class BulkOut(BaseModel):
    status: Literal["success", "error"] = "success"
    users: list[dict[str, Any]] = Field(default_factory=list)
    bookings: list[dict[str, Any]] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)
