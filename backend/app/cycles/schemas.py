from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.patch import PatchModel

CycleStatus = Literal["planned", "active", "completed"]
EnrollmentStatus = Literal["active", "completed", "dropped"]
PaymentStatus = Literal["pending", "partial", "paid", "refunded"]


class ProgramCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: str | None = Field(default=None, max_length=50)
    duration_weeks: int | None = Field(default=None, ge=1)
    price: Decimal | None = Field(default=None, ge=0)
    description: str | None = None


class ProgramOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str | None = None
    duration_weeks: int | None = None
    price: Decimal | None = None
    description: str | None = None


class CycleCreateRequest(BaseModel):
    program_id: int
    name: str = Field(min_length=1, max_length=200)
    start_date: date
    end_date: date
    max_students: int | None = Field(default=None, ge=1)
    notes: str | None = None

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class CyclePatchRequest(PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset({"name", "start_date", "end_date", "status"})

    name: str | None = Field(default=None, min_length=1, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    status: CycleStatus | None = None
    max_students: int | None = Field(default=None, ge=1)
    notes: str | None = None


class CycleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    program_id: int
    name: str
    start_date: date
    end_date: date
    status: str
    max_students: int | None = None
    current_students: int
    notes: str | None = None


class EnrollRequest(BaseModel):
    user_id: int
    payment_status: PaymentStatus = "pending"
    total_paid: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None


class EnrollmentPatchRequest(PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset({"status", "payment_status", "total_paid"})

    status: EnrollmentStatus | None = None
    payment_status: PaymentStatus | None = None
    total_paid: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    cycle_id: int
    status: str
    payment_status: str
    total_paid: Decimal
    notes: str | None = None
    enrolled_at: datetime


class CycleStudentOut(EnrollmentOut):
    first_name: str
    last_name: str
    email: str
