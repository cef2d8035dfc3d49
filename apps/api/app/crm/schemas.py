from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.core.config import get_settings


AttendeeType = Literal["user", "lead", "contact"]


class PartialUpdate(BaseModel):
    """PATCH body: omitted keys are left alone, explicit nulls only where the column allows them."""

    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_null_required(self) -> PartialUpdate:
        cleared = [name for name in self.non_nullable if name in self.model_fields_set and getattr(self, name) is None]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1)
    industry: str | None = None
    hospital_size: str | None = None
    website: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None


class CompanyUpdate(PartialUpdate):
    non_nullable = ("name",)

    name: str | None = Field(default=None, min_length=1)
    industry: str | None = None
    hospital_size: str | None = None
    website: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    industry: str | None
    hospital_size: str | None
    website: str | None
    phone: str | None
    address: str | None
    notes: str | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    title: str | None = None
    company_id: int | None = None
    notes: str | None = None


class ContactUpdate(PartialUpdate):
    non_nullable = ("first_name", "last_name")

    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    title: str | None = None
    company_id: int | None = None
    notes: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    title: str | None
    company_id: int | None
    notes: str | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class LeadCreate(BaseModel):
    name: str = Field(min_length=1)
    source: str | None = None
    status: str = Field(default="new", min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    company_name: str | None = None
    company_id: int | None = None
    contact_id: int | None = None
    notes: str | None = None
    assigned_to: int | None = None
    team_id: int | None = None


class LeadUpdate(PartialUpdate):
    """Ownership is not editable here; use the assign endpoints."""

    non_nullable = ("name", "status")

    name: str | None = Field(default=None, min_length=1)
    source: str | None = None
    status: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    company_name: str | None = None
    company_id: int | None = None
    contact_id: int | None = None
    notes: str | None = None
    team_id: int | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    source: str | None
    status: str
    email: str | None
    phone: str | None
    company_name: str | None
    company_id: int | None
    contact_id: int | None
    notes: str | None
    assigned_to: int | None
    team_id: int | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class OpportunityCreate(BaseModel):
    name: str = Field(min_length=1)
    stage: str = Field(default="qualification", min_length=1)
    value: Decimal | None = Field(default=None, ge=0)
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: datetime | None = None
    notes: str | None = None
    contact_id: int | None = None
    company_id: int | None = None
    lead_id: int | None = None
    assigned_to: int | None = None
    team_id: int | None = None


class OpportunityUpdate(PartialUpdate):
    non_nullable = ("name", "stage")

    name: str | None = Field(default=None, min_length=1)
    stage: str | None = Field(default=None, min_length=1)
    value: Decimal | None = Field(default=None, ge=0)
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: datetime | None = None
    notes: str | None = None
    contact_id: int | None = None
    company_id: int | None = None
    lead_id: int | None = None
    team_id: int | None = None


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    stage: str
    value: Decimal | None
    probability: int | None
    expected_close_date: datetime | None
    notes: str | None
    contact_id: int | None
    company_id: int | None
    lead_id: int | None
    assigned_to: int | None
    team_id: int | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    sku: str | None = None
    price: Decimal = Field(ge=0)
    tax: Decimal | None = Field(default=Decimal("0"), ge=0)
    is_active: bool = True


class ProductUpdate(PartialUpdate):
    non_nullable = ("name", "price", "is_active")

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    sku: str | None = None
    price: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    sku: str | None
    price: Decimal
    tax: Decimal | None
    is_active: bool
    created_by: int
    created_at: datetime


class LineItemCreate(BaseModel):
    product_id: int
    description: str | None = None
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    subtotal: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def default_subtotal(self) -> LineItemCreate:
        if self.subtotal is None:
            self.subtotal = self.unit_price * self.quantity
        return self


class QuotationItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quotation_id: int
    product_id: int
    description: str | None
    quantity: int
    unit_price: Decimal
    tax: Decimal | None
    subtotal: Decimal


class SalesOrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sales_order_id: int
    product_id: int
    description: str | None
    quantity: int
    unit_price: Decimal
    tax: Decimal | None
    subtotal: Decimal


class QuotationCreate(BaseModel):
    quotation_number: str = Field(min_length=1)
    opportunity_id: int | None = None
    contact_id: int | None = None
    company_id: int | None = None
    subtotal: Decimal = Field(ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    discount: Decimal | None = Field(default=None, ge=0)
    total: Decimal = Field(ge=0)
    status: str = Field(default="draft", min_length=1)
    valid_until: datetime | None = None
    notes: str | None = None
    items: list[LineItemCreate] = Field(default_factory=list)


class QuotationUpdate(PartialUpdate):
    non_nullable = ("subtotal", "total", "status")

    opportunity_id: int | None = None
    contact_id: int | None = None
    company_id: int | None = None
    subtotal: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    discount: Decimal | None = Field(default=None, ge=0)
    total: Decimal | None = Field(default=None, ge=0)
    status: str | None = Field(default=None, min_length=1)
    valid_until: datetime | None = None
    notes: str | None = None


class QuotationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quotation_number: str
    opportunity_id: int | None
    contact_id: int | None
    company_id: int | None
    subtotal: Decimal
    tax: Decimal | None
    discount: Decimal | None
    total: Decimal
    status: str
    valid_until: datetime | None
    notes: str | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class SalesOrderCreate(BaseModel):
    order_number: str = Field(min_length=1)
    quotation_id: int | None = None
    opportunity_id: int | None = None
    contact_id: int | None = None
    company_id: int | None = None
    subtotal: Decimal = Field(ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    discount: Decimal | None = Field(default=None, ge=0)
    total: Decimal = Field(ge=0)
    status: str = Field(default="pending", min_length=1)
    order_date: datetime | None = None
    notes: str | None = None
    items: list[LineItemCreate] = Field(default_factory=list)


class SalesOrderUpdate(PartialUpdate):
    non_nullable = ("subtotal", "total", "status", "order_date")

    subtotal: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    discount: Decimal | None = Field(default=None, ge=0)
    total: Decimal | None = Field(default=None, ge=0)
    status: str | None = Field(default=None, min_length=1)
    order_date: datetime | None = None
    notes: str | None = None


class SalesOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    quotation_id: int | None
    opportunity_id: int | None
    contact_id: int | None
    company_id: int | None
    subtotal: Decimal
    tax: Decimal | None
    discount: Decimal | None
    total: Decimal
    status: str
    order_date: datetime
    notes: str | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    due_date: datetime | None = None
    priority: Literal["low", "medium", "high"] = "medium"
    status: str = Field(default="pending", min_length=1)
    assigned_to: int | None = None
    related_to: str | None = None
    related_id: int | None = None


class TaskUpdate(PartialUpdate):
    non_nullable = ("title", "priority", "status")

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    due_date: datetime | None = None
    priority: Literal["low", "medium", "high"] | None = None
    status: str | None = Field(default=None, min_length=1)
    related_to: str | None = None
    related_id: int | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    due_date: datetime | None
    priority: str
    status: str
    assigned_to: int | None
    related_to: str | None
    related_id: int | None
    created_by: int
    created_at: datetime
    updated_at: datetime


class ActivityCreate(BaseModel):
    type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str | None = None
    completed_at: datetime | None = None
    related_to: str | None = None
    related_id: int | None = None


class ActivityUpdate(PartialUpdate):
    non_nullable = ("type", "title")

    type: str | None = Field(default=None, min_length=1)
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    completed_at: datetime | None = None
    related_to: str | None = None
    related_id: int | None = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    description: str | None
    completed_at: datetime | None
    related_to: str | None
    related_id: int | None
    created_by: int
    created_at: datetime


class AppointmentCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    start_time: datetime
    end_time: datetime
    location: str | None = None
    attendee_type: AttendeeType
    attendee_id: int

    @model_validator(mode="after")
    def validate_window(self) -> AppointmentCreate:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class AppointmentUpdate(PartialUpdate):
    non_nullable = ("title", "start_time", "end_time", "attendee_type", "attendee_id")

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    attendee_type: AttendeeType | None = None
    attendee_id: int | None = None


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    start_time: datetime
    end_time: datetime
    location: str | None
    attendee_type: str
    attendee_id: int
    created_by: int
    created_at: datetime
    updated_at: datetime


class AssignRequest(BaseModel):
    assigned_to: int
    assignment_notes: str | None = None


class BulkAssignRequest(BaseModel):
    lead_ids: list[int] = Field(min_length=1)
    assigned_to: int
    notes: str | None = None

    @field_validator("lead_ids")
    @classmethod
    def validate_size(cls, value: list[int]) -> list[int]:
        limit = get_settings().bulk_assign_max_ids
        if len(value) > limit:
            raise ValueError(f"at most {limit} ids per request")
        return value


class BulkAssignItem(BaseModel):
    id: int
    success: bool
    error: str | None = None


class BulkAssignResponse(BaseModel):
    success: bool
    results: list[BulkAssignItem]
