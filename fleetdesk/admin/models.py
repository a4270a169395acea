# fleetdesk/admin/models.py
"""
Pydantic request models for the admin API.

These live outside the transport layer so services and tests can
validate payloads without depending on FastAPI.  Directory rows are
schemaless documents, so their models accept unknown fields and only
pin down the ones the backend reads.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _to_document(model: BaseModel) -> dict[str, Any]:
    """camelCase document body without unset optional fields."""
    return model.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

class CustomerInput(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=256)
    email: str | None = None
    phone: str | None = None
    customer_id: str | None = Field(default=None, alias="customerId", max_length=64)
    uid: str | None = None
    profile_image: str | None = Field(default=None, alias="profileImage")

    def to_document(self) -> dict[str, Any]:
        return _to_document(self)


class DriverInput(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=256)
    email: str | None = None
    phone: str | None = None
    driver_id: str | None = Field(default=None, alias="driverId", max_length=64)
    uid: str | None = None
    license_number: str | None = Field(default=None, alias="licenseNumber")
    status: Literal["active", "inactive", "on-leave"] = "active"
    profile_image: str | None = Field(default=None, alias="profileImage")

    def to_document(self) -> dict[str, Any]:
        return _to_document(self)


class TruckInput(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    number_plate: str = Field(..., min_length=1, alias="numberPlate")
    model: str | None = None
    capacity: float | None = Field(default=None, ge=0)
    status: Literal["operational", "maintenance", "out-of-service"] = "operational"
    images: list[str] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return _to_document(self)


class AdminInput(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=256)
    email: str = Field(..., min_length=3, max_length=320)
    phone: str | None = None
    role: Literal["admin", "super-admin"] = "admin"
    profile_image: str | None = Field(default=None, alias="profileImage")

    def to_document(self) -> dict[str, Any]:
        return _to_document(self)


class AdminPatch(BaseModel):
    """Admin profile update; ``password`` is re-hashed by the service."""

    model_config = ConfigDict(extra="allow")

    password: str | None = Field(default=None, min_length=8, max_length=128)

    def to_document(self) -> dict[str, Any]:
        patch = dict(self.model_extra or {})
        patch.pop("id", None)
        if self.password:
            patch["password"] = self.password
        return patch


class DirectoryPatch(BaseModel):
    """Partial update for any directory row."""

    model_config = ConfigDict(extra="allow")

    def to_document(self) -> dict[str, Any]:
        patch = dict(self.model_extra or {})
        patch.pop("id", None)
        return patch


# ---------------------------------------------------------------------------
# Dispatches
# ---------------------------------------------------------------------------

class CreateDispatchRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    customer_id: str = Field(..., min_length=1, alias="customerId")
    source_location: Any = Field(..., alias="sourceLocation")
    destination_location: Any = Field(..., alias="destinationLocation")
    dispatch_id: str | None = Field(default=None, alias="dispatchId")
    customer_name: str | None = Field(default=None, alias="customerName")
    requested_time: str | None = Field(default=None, alias="requestedTime")
    notes: str | None = None

    def to_document(self) -> dict[str, Any]:
        return _to_document(self)


class TransitionRequest(BaseModel):
    status: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=1000)


class AssignmentItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str = Field(..., min_length=1, alias="driverId")
    truck_id: str | None = Field(default=None, alias="truckId")
    notes: str | None = None


class AssignRequest(BaseModel):
    assignments: list[AssignmentItem] = Field(..., min_length=1)

    @field_validator("assignments")
    @classmethod
    def drivers_unique(cls, v: list[AssignmentItem]) -> list[AssignmentItem]:
        ids = [a.driver_id for a in v]
        if len(ids) != len(set(ids)):
            raise ValueError("each driver may appear only once")
        return v


class AssignmentStatusRequest(BaseModel):
    status: Literal["in-progress", "completed"]


# ---------------------------------------------------------------------------
# Notifications / auth
# ---------------------------------------------------------------------------

class BroadcastRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audience: Literal[
        "all-customers", "all-drivers", "all-users",
        "specific-customer", "specific-driver", "admin-only",
    ]
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)
    priority: Literal["low", "normal", "high"] = "normal"
    recipient_id: str | None = Field(default=None, alias="recipientId")

    def to_payload(self, sender_id: str | None = None, sender_name: str | None = None) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        payload["senderId"] = sender_id
        payload["senderName"] = sender_name
        return payload


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
