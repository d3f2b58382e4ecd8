from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salesfunnel.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogProduct(Base):
    __tablename__ = "catalog_product"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sku: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    floor_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    tiers: Mapped[list[CatalogPricingTier]] = relationship(
        "CatalogPricingTier",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CatalogPricingTier.min_quantity",
    )

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="ck_catalog_product_base_price"),
        CheckConstraint("floor_price >= 0", name="ck_catalog_product_floor_price"),
    )


class CatalogPricingTier(Base):
    __tablename__ = "catalog_pricing_tier"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("catalog_product.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)

    product: Mapped[CatalogProduct] = relationship("CatalogProduct", back_populates="tiers")

    __table_args__ = (
        UniqueConstraint("product_id", "min_quantity", name="uq_catalog_pricing_tier_min_quantity"),
        CheckConstraint("min_quantity >= 1", name="ck_catalog_pricing_tier_min_quantity"),
    )
