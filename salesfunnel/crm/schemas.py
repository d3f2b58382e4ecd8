from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


CustomerStatus = Literal["PRIVATE", "PUBLIC_POOL"]
LeadSource = Literal["exhibition", "website", "referral", "cold_call", "other"]
FollowUpType = Literal["call", "visit", "email", "other"]
OpportunityStage = Literal[
    "PROSPECTING",
    "QUALIFICATION",
    "PROPOSAL",
    "NEGOTIATION",
    "CLOSED_WON",
    "CLOSED_LOST",
]


class ContactCreate(BaseModel):
    name: str = Field(min_length=1)
    phone: str | None = None
    email: str | None = None
    role: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    name: str
    phone: str | None
    email: str | None
    role: str | None
    is_primary: bool


class CustomerCreate(BaseModel):
    company_name: str = Field(min_length=1, max_length=255)
    industry: str | None = None
    region: str | None = None
    source: LeadSource | None = None
    owner_user_id: str | None = None
    primary_contact: ContactCreate | None = None

    @field_validator("company_name")
    @classmethod
    def _strip_company_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("company_name must not be blank")
        return stripped


class CustomerUpdate(BaseModel):
    company_name: str | None = Field(default=None, min_length=1, max_length=255)
    industry: str | None = None
    region: str | None = None
    source: LeadSource | None = None
    last_contact_at: datetime | None = None


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_name: str
    industry: str | None
    region: str | None
    status: CustomerStatus
    owner_user_id: str | None
    last_contact_at: datetime | None
    source: str | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class CustomerRelationsRead(BaseModel):
    opportunities: int
    quotes: int
    orders: int

    @property
    def total(self) -> int:
        return self.opportunities + self.quotes + self.orders


class FollowUpCreate(BaseModel):
    follow_up_type: FollowUpType
    content: str = Field(min_length=1)
    opportunity_id: UUID | None = None


class FollowUpRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    opportunity_id: UUID | None
    user_id: str
    follow_up_type: str
    content: str
    created_at: datetime


class BatchIdsRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1, max_length=500)


class BatchFailure(BaseModel):
    id: UUID
    code: str
    message: str


class BatchResult(BaseModel):
    succeeded: list[UUID] = Field(default_factory=list)
    failed: list[BatchFailure] = Field(default_factory=list)

    def add_failure(self, item: dict[str, Any]) -> None:
        self.failed.append(BatchFailure.model_validate(item))


class InactiveReleaseSummary(BaseModel):
    threshold_days: int
    found: int
    released: list[UUID] = Field(default_factory=list)
    failed: list[BatchFailure] = Field(default_factory=list)


class PoolSettingsRead(BaseModel):
    customer_claim_limit: int
    customer_inactive_days: int


class PoolSettingsUpdate(BaseModel):
    customer_claim_limit: int | None = Field(default=None, ge=0)
    customer_inactive_days: int | None = Field(default=None, ge=1)


class OpportunityCreate(BaseModel):
    customer_id: UUID
    name: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    expected_close_date: date | None = None


class OpportunityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, ge=0)
    expected_close_date: date | None = None


class OpportunityStageChange(BaseModel):
    stage: str = Field(min_length=1)
    loss_reason: str | None = None


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    name: str
    amount: Decimal
    stage: OpportunityStage
    probability: int
    expected_close_date: date | None
    loss_reason: str | None
    owner_user_id: str
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    row_version: int
