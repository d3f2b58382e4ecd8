from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from salesfunnel.api.deps import get_current_actor
from salesfunnel.business.catalog.schemas import (
    CatalogPriceRead,
    CatalogProductCreate,
    CatalogProductRead,
    CatalogTiersReplace,
)
from salesfunnel.business.catalog.service import catalog_service
from salesfunnel.core.database import get_db
from salesfunnel.platform.security.context import Actor


router = APIRouter(prefix="/api/funnel/products", tags=["funnel.products"])


@router.post("", response_model=CatalogProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: CatalogProductCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CatalogProductRead:
    return catalog_service.create_product(db, actor, payload)


@router.get("", response_model=list[CatalogProductRead])
def list_products(
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[CatalogProductRead]:
    return catalog_service.list_products(db, active_only=active_only)


@router.get("/{product_id}", response_model=CatalogProductRead)
def get_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CatalogProductRead:
    return catalog_service.get_product(db, product_id)


@router.put("/{product_id}/tiers", response_model=CatalogProductRead)
def replace_tiers(
    product_id: uuid.UUID,
    payload: CatalogTiersReplace,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CatalogProductRead:
    return catalog_service.replace_tiers(db, actor, product_id, payload.tiers)


@router.get("/{product_id}/price", response_model=CatalogPriceRead)
def get_price(
    product_id: uuid.UUID,
    quantity: int = Query(ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CatalogPriceRead:
    return catalog_service.get_price(db, product_id, quantity)
