"""Pydantic schemas for the SOS and test-push endpoints."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sos_relay.models.alert import (
    ALERT_TIMESTAMP_MAX_LENGTH,
    DISTRICT_MAX_LENGTH,
    PLACE_NAME_MAX_LENGTH,
    REPORTER_NAME_MAX_LENGTH,
    REPORTER_PHONE_MAX_LENGTH,
    SENDER_ID_MAX_LENGTH,
)


class LocationIn(BaseModel):
    """GPS fix reported by the device."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(None, ge=0, description="Horizontal accuracy in meters")


class UserInfoIn(BaseModel):
    """Reporter details sent alongside an SOS. Unknown keys are kept and forwarded."""

    model_config = ConfigDict(extra="allow")

    district: str | None = Field(None, max_length=DISTRICT_MAX_LENGTH)
    name: str | None = Field(None, max_length=REPORTER_NAME_MAX_LENGTH)
    location: str | None = Field(
        None, max_length=PLACE_NAME_MAX_LENGTH, description="Free-text place, e.g. 'Manipal, Karnataka'"
    )
    phone: str | None = Field(None, max_length=REPORTER_PHONE_MAX_LENGTH)
    message: str | None = None

    @field_validator("district", "name", "location", "phone", "message", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:  # noqa: ANN401
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class SosRequest(BaseModel):
    """Body of POST /sos."""

    model_config = ConfigDict(populate_by_name=True)

    sender_id: str = Field(..., min_length=1, max_length=SENDER_ID_MAX_LENGTH)
    sos_type: Literal["sos_alert", "stop"]
    location: LocationIn | None = None
    user_info: UserInfoIn | None = Field(None, alias="userInfo")
    timestamp: str | None = Field(None, max_length=ALERT_TIMESTAMP_MAX_LENGTH, description="Client epoch milliseconds")

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Any:  # noqa: ANN401
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(int(v))
        return v

    @property
    def district(self) -> str | None:
        return self.user_info.district if self.user_info else None


class SosResponse(BaseModel):
    """Response of POST /sos."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    message_id: str = Field(..., alias="messageId")
    topic: str
    sender_id: str = Field(..., alias="senderId")
    district: str
    timestamp: datetime


class PushTestRequest(BaseModel):
    """Body of POST /test-push. Every field is optional."""

    district: str | None = Field(None, max_length=DISTRICT_MAX_LENGTH)
    title: str | None = None
    body: str | None = None


class PushTestData(BaseModel):
    location: LocationIn
    user_info: dict[str, Any] = Field(..., alias="userInfo")

    model_config = ConfigDict(populate_by_name=True)


class PushTestResponse(BaseModel):
    """Response of POST /test-push."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    message_id: str = Field(..., alias="messageId")
    topic: str
    district: str
    sender_id: str = Field(..., alias="senderId")
    test_data: PushTestData = Field(..., alias="testData")
    timestamp: datetime


class SosAlertItem(BaseModel):
    """Alert snapshot as listed on the admin dashboard."""

    model_config = ConfigDict(from_attributes=True)

    sender_id: str
    active: bool
    district: str
    region: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    reporter_name: str | None = None
    reporter_phone: str | None = None
    reporter_message: str | None = None
    place_name: str | None = None
    alert_timestamp: str | None = None
    last_updated: datetime
    expired_at: datetime | None = None
    expired_by: str | None = None
