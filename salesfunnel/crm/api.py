from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from salesfunnel.api.deps import get_current_actor
from salesfunnel.core.database import get_db
from salesfunnel.core.rbac import ROLE_ADMIN, ROLE_SALES_MANAGER, ensure_role
from salesfunnel.crm.schemas import (
    BatchIdsRequest,
    BatchResult,
    CustomerCreate,
    CustomerRead,
    CustomerRelationsRead,
    CustomerUpdate,
    FollowUpCreate,
    FollowUpRead,
    InactiveReleaseSummary,
    OpportunityCreate,
    OpportunityRead,
    OpportunityStageChange,
    OpportunityUpdate,
    PoolSettingsRead,
    PoolSettingsUpdate,
)
from salesfunnel.crm.service import customer_pool_service, opportunity_service
from salesfunnel.crm.settings import get_pool_settings, update_pool_settings
from salesfunnel.platform.security.context import Actor


router = APIRouter(prefix="/api/funnel/customers", tags=["funnel.customers"])
opportunities_router = APIRouter(prefix="/api/funnel/opportunities", tags=["funnel.opportunities"])
settings_router = APIRouter(prefix="/api/funnel/settings", tags=["funnel.settings"])
jobs_router = APIRouter(prefix="/api/funnel/jobs", tags=["funnel.jobs"])


@router.post("", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    dto: CustomerCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerRead:
    return customer_pool_service.create_customer(db, actor, dto)


@router.get("", response_model=list[CustomerRead])
def list_customers(
    status_filter: str | None = Query(default=None, alias="status"),
    owner_user_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[CustomerRead]:
    return customer_pool_service.list_customers(
        db, status=status_filter, owner_user_id=owner_user_id, limit=limit, offset=offset
    )


@router.get("/inactive", response_model=list[CustomerRead])
def list_inactive_customers(
    threshold_days: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[CustomerRead]:
    ensure_role(actor.role, {ROLE_ADMIN, ROLE_SALES_MANAGER}, "review inactive customers")
    return customer_pool_service.find_inactive(db, threshold_days)


@router.post("/batch-claim", response_model=BatchResult)
def batch_claim(
    dto: BatchIdsRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> BatchResult:
    return customer_pool_service.batch_claim(db, actor, dto.ids)


@router.post("/batch-release", response_model=BatchResult)
def batch_release(
    dto: BatchIdsRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> BatchResult:
    return customer_pool_service.batch_release(db, actor, dto.ids)


@router.post("/batch-delete", response_model=BatchResult)
def batch_delete(
    dto: BatchIdsRequest,
    force: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> BatchResult:
    return customer_pool_service.batch_delete(db, actor, dto.ids, force=force)


@router.get("/{customer_id}", response_model=CustomerRead)
def get_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerRead:
    return customer_pool_service.get_customer(db, customer_id)


@router.patch("/{customer_id}", response_model=CustomerRead)
def update_customer(
    customer_id: uuid.UUID,
    dto: CustomerUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerRead:
    return customer_pool_service.update_customer(db, actor, customer_id, dto)


@router.post("/{customer_id}/claim", response_model=CustomerRead)
def claim_customer(
    customer_id: uuid.UUID,
    owner_user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerRead:
    return customer_pool_service.claim(db, actor, customer_id, owner_user_id)


@router.post("/{customer_id}/release", response_model=CustomerRead)
def release_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerRead:
    return customer_pool_service.release(db, actor, customer_id)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: uuid.UUID,
    force: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    customer_pool_service.delete(db, actor, customer_id, force=force)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{customer_id}/relations", response_model=CustomerRelationsRead)
def customer_relations(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerRelationsRead:
    return customer_pool_service.check_relations(db, customer_id)


@router.post("/{customer_id}/follow-ups", response_model=FollowUpRead, status_code=status.HTTP_201_CREATED)
def record_follow_up(
    customer_id: uuid.UUID,
    dto: FollowUpCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> FollowUpRead:
    return customer_pool_service.record_follow_up(db, actor, customer_id, dto)


@opportunities_router.post("", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    dto: OpportunityCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead:
    return opportunity_service.create_opportunity(db, actor, dto)


@opportunities_router.get("", response_model=list[OpportunityRead])
def list_opportunities(
    customer_id: uuid.UUID | None = Query(default=None),
    owner_user_id: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[OpportunityRead]:
    return opportunity_service.list_opportunities(db, customer_id=customer_id, owner_user_id=owner_user_id, stage=stage)


@opportunities_router.get("/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead:
    return opportunity_service.get_opportunity(db, opportunity_id)


@opportunities_router.patch("/{opportunity_id}", response_model=OpportunityRead)
def update_opportunity(
    opportunity_id: uuid.UUID,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead:
    return opportunity_service.update_opportunity(db, actor, opportunity_id, dto)


@opportunities_router.post("/{opportunity_id}/stage", response_model=OpportunityRead)
def change_stage(
    opportunity_id: uuid.UUID,
    dto: OpportunityStageChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead:
    return opportunity_service.transition_stage(db, actor, opportunity_id, dto.stage, dto.loss_reason)


@opportunities_router.delete("/{opportunity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_opportunity(
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    opportunity_service.delete_opportunity(db, actor, opportunity_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@settings_router.get("", response_model=PoolSettingsRead)
def read_settings(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PoolSettingsRead:
    return get_pool_settings(db)


@settings_router.put("", response_model=PoolSettingsRead)
def write_settings(
    dto: PoolSettingsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PoolSettingsRead:
    return update_pool_settings(db, actor, dto)


@jobs_router.post("/release-inactive", response_model=InactiveReleaseSummary)
def run_release_inactive(
    threshold_days: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> InactiveReleaseSummary:
    ensure_role(actor.role, {ROLE_ADMIN}, "run pool jobs")
    return customer_pool_service.release_inactive(db, threshold_days)
