from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from salesfunnel.business.catalog.models import CatalogPricingTier, CatalogProduct
from salesfunnel.business.catalog.pricing import PriceTier, ProductPricing
from salesfunnel.business.catalog.schemas import (
    CatalogPriceRead,
    CatalogPricingTierInput,
    CatalogProductCreate,
    CatalogProductRead,
)
from salesfunnel.business.errors import ConflictError, NotFoundError, ValidationError
from salesfunnel.core.rbac import ROLE_ADMIN, ensure_role
from salesfunnel.platform.security.context import Actor


logger = logging.getLogger("salesfunnel.catalog")


def _validate_tiers(tiers: Iterable[CatalogPricingTierInput]) -> list[CatalogPricingTierInput]:
    rows = list(tiers)
    seen: set[int] = set()
    for tier in rows:
        if tier.min_quantity in seen:
            raise ValidationError(
                "duplicate tier min_quantity",
                details={"min_quantity": tier.min_quantity},
            )
        seen.add(tier.min_quantity)
    return sorted(rows, key=lambda tier: tier.min_quantity)


@dataclass(slots=True)
class CatalogService:
    def create_product(self, session: Session, actor: Actor, dto: CatalogProductCreate) -> CatalogProductRead:
        ensure_role(actor.role, {ROLE_ADMIN}, "manage products")
        tiers = _validate_tiers(dto.tiers)

        product = CatalogProduct(**dto.model_dump(mode="python", exclude={"tiers"}))
        product.tiers = [CatalogPricingTier(min_quantity=t.min_quantity, unit_price=t.unit_price) for t in tiers]
        session.add(product)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("catalog product already exists", details={"sku": dto.sku})
        session.refresh(product)
        logger.info("catalog.product_created", extra={"status": "created"})
        return CatalogProductRead.model_validate(product)

    def get_product(self, session: Session, product_id: uuid.UUID) -> CatalogProductRead:
        return CatalogProductRead.model_validate(self._get_product(session, product_id))

    def list_products(self, session: Session, *, active_only: bool = True) -> list[CatalogProductRead]:
        stmt = select(CatalogProduct).options(selectinload(CatalogProduct.tiers))
        if active_only:
            stmt = stmt.where(CatalogProduct.is_active.is_(True))
        rows = session.scalars(stmt.order_by(CatalogProduct.sku.asc())).all()
        return [CatalogProductRead.model_validate(row) for row in rows]

    def replace_tiers(
        self,
        session: Session,
        actor: Actor,
        product_id: uuid.UUID,
        tiers: list[CatalogPricingTierInput],
    ) -> CatalogProductRead:
        ensure_role(actor.role, {ROLE_ADMIN}, "manage products")
        ordered = _validate_tiers(tiers)
        product = self._get_product(session, product_id)

        session.execute(delete(CatalogPricingTier).where(CatalogPricingTier.product_id == product.id))
        session.add_all(
            [CatalogPricingTier(product_id=product.id, min_quantity=t.min_quantity, unit_price=t.unit_price) for t in ordered]
        )
        session.commit()
        return CatalogProductRead.model_validate(self._get_product(session, product_id))

    def get_price(self, session: Session, product_id: uuid.UUID, quantity: int) -> CatalogPriceRead:
        pricing = self.pricing_snapshot(session, [product_id])[product_id]
        unit_price = pricing.system_price(quantity)
        return CatalogPriceRead(
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            floor_price=pricing.floor_price,
            source="TIER" if pricing.tiers else "BASE",
        )

    def pricing_snapshot(self, session: Session, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProductPricing]:
        """Floor price and tier table per product id; unknown ids raise ``NotFoundError``."""
        wanted = set(product_ids)
        if not wanted:
            return {}

        products = session.scalars(
            select(CatalogProduct)
            .options(selectinload(CatalogProduct.tiers))
            .where(CatalogProduct.id.in_(wanted))
        ).all()

        snapshot = {
            product.id: ProductPricing(
                product_id=product.id,
                base_price=Decimal(product.base_price),
                floor_price=Decimal(product.floor_price),
                tiers=tuple(PriceTier(min_quantity=t.min_quantity, unit_price=Decimal(t.unit_price)) for t in product.tiers),
            )
            for product in products
        }
        missing = wanted - snapshot.keys()
        if missing:
            raise NotFoundError(
                "product not found",
                details={"product_ids": sorted(str(item) for item in missing)},
            )
        return snapshot

    @staticmethod
    def _get_product(session: Session, product_id: uuid.UUID) -> CatalogProduct:
        product = session.scalar(
            select(CatalogProduct).options(selectinload(CatalogProduct.tiers)).where(CatalogProduct.id == product_id)
        )
        if product is None:
            raise NotFoundError("product not found", details={"product_id": str(product_id)})
        return product


catalog_service = CatalogService()
