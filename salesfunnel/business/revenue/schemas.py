from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from salesfunnel.crm.schemas import BatchFailure, BatchIdsRequest, BatchResult


QuoteStatus = Literal["DRAFT", "PENDING_MANAGER", "PENDING_DIRECTOR", "APPROVED", "REJECTED", "SENT"]
ApprovalAction = Literal["approve", "reject", "escalate"]

__all__ = [
    "ApprovalAction",
    "BatchFailure",
    "BatchIdsRequest",
    "BatchResult",
    "QuoteApprovalRead",
    "QuoteCreate",
    "QuoteDecision",
    "QuoteItemInput",
    "QuoteItemsReplace",
    "QuoteLineRead",
    "QuoteRead",
    "QuoteRejection",
    "QuoteStatus",
    "RevenueOrderRead",
]


class QuoteItemInput(BaseModel):
    product_id: UUID
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)


class QuoteCreate(BaseModel):
    customer_id: UUID
    opportunity_id: UUID | None = None
    items: list[QuoteItemInput] = Field(min_length=1)


class QuoteItemsReplace(BaseModel):
    items: list[QuoteItemInput] = Field(min_length=1)


class QuoteDecision(BaseModel):
    comment: str | None = None


class QuoteRejection(BaseModel):
    reason: str


class QuoteLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    product_id: UUID
    quantity: int
    unit_price: Decimal
    calculated_price: Decimal
    line_total: Decimal
    is_manual_price: bool


class QuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_number: str
    customer_id: UUID
    opportunity_id: UUID | None
    status: QuoteStatus
    requires_approval: bool
    total_amount: Decimal
    created_by: str
    approved_by: str | None
    rejection_reason: str | None
    created_at: datetime
    updated_at: datetime
    row_version: int
    lines: list[QuoteLineRead] = Field(default_factory=list)


class QuoteApprovalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_id: UUID
    approver_user_id: str
    action: ApprovalAction
    from_status: str
    to_status: str
    comment: str | None
    correlation_id: str | None
    created_at: datetime


class RevenueOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    quote_id: UUID | None
    opportunity_id: UUID | None
    customer_id: UUID
    total_amount: Decimal
    status: str
    payment_status: str
    created_by: str
    created_at: datetime
    updated_at: datetime
