from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.core.patch import PatchModel

LeadStatus = Literal["new", "contacted", "interested", "negotiating", "closed_won", "closed_lost"]
ActivityType = Literal["note", "call", "email", "meeting"]


class LeadCreateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str = Field(min_length=3, max_length=32)
    source: str = Field(min_length=1, max_length=64)
    interested_program: str | None = Field(default=None, max_length=200)
    notes: str | None = None
    assigned_to: int | None = None


class LeadPatchRequest(PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"first_name", "last_name", "phone", "source", "status"}
    )

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, min_length=3, max_length=32)
    source: str | None = Field(default=None, min_length=1, max_length=64)
    status: LeadStatus | None = None
    interested_program: str | None = Field(default=None, max_length=200)
    notes: str | None = None
    assigned_to: int | None = None
    next_follow_up: datetime | None = None


class LeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str | None = None
    phone: str
    source: str
    status: str
    interested_program: str | None = None
    notes: str | None = None
    assigned_to: int | None = None
    next_follow_up: datetime | None = None
    created_at: datetime
    updated_at: datetime


class LeadListResponse(BaseModel):
    items: list[LeadOut]
    total: int
    limit: int
    offset: int


class ActivityCreateRequest(BaseModel):
    activity_type: ActivityType
    description: str = Field(min_length=1, max_length=5000)


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    user_id: int | None = None
    activity_type: str
    description: str
    created_at: datetime


class ConvertRequest(BaseModel):
    program_name: str = Field(min_length=1, max_length=200)
    amount: Decimal = Field(gt=0)
    stage: str = Field(default="proposal", min_length=1, max_length=32)
    expected_close_date: date | None = None
    notes: str | None = None


class DealOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    program_name: str
    amount: Decimal
    stage: str
    assigned_to: int | None = None
    expected_close_date: date | None = None
    notes: str | None = None
    created_at: datetime


class ConvertResponse(BaseModel):
    lead_id: int
    deal: DealOut
