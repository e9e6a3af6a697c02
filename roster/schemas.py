"""
Pydantic schemas for the rider roster API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_RIDER_IMAGE = (
    "https://images.pexels.com/photos/220453/pexels-photo-220453.jpeg"
)

RiderStatus = Literal["active", "inactive", "premium", "suspended"]
VehicleType = Literal["Motorcycle", "Bicycle", "Car"]


class RiderFields(BaseModel):
    """
    Normalised rider attributes as they are written to a store.

    Only built from payloads that already passed `validate_rider_fields`;
    this model applies defaults, trims text and lowercases the email.
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    email: str
    position: str
    nric: str
    image: str = DEFAULT_RIDER_IMAGE
    status: RiderStatus = "active"
    phone: str
    vehicle: VehicleType = "Motorcycle"
    license: str
    rating: float = 4.5
    ridesCompleted: int = Field(default=0, ge=0)

    @field_validator("name", "email", "position", "nric", "image", "phone", "license")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, value: str) -> str:
        return value.lower()

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "RiderFields":
        # Explicit nulls behave like omitted fields so defaults apply.
        return cls.model_validate(
            {key: value for key, value in data.items() if value is not None}
        )

    def for_create(self) -> dict:
        return self.model_dump()

    def for_update(self) -> dict:
        return self.model_dump(exclude_unset=True)


class RiderOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    email: str
    position: str
    nric: str
    image: str
    status: str
    phone: str
    vehicle: str
    license: str
    rating: float
    ridesCompleted: int
    createdAt: datetime
    updatedAt: datetime


class RiderListResponse(BaseModel):
    riders: list[RiderOut]
    total: int


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str
    details: list[str] = Field(default_factory=list)


class DatabaseStatus(BaseModel):
    connected: bool
    name: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded", "unavailable"]
    mode: Literal["database", "local"]
    environment: str
    database: DatabaseStatus
    riders: Optional[int] = None
    uptimeSeconds: float
