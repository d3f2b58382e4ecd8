from salesfunnel.business.catalog.models import CatalogPricingTier, CatalogProduct
from salesfunnel.business.catalog.pricing import PriceTier, ProductPricing, TieredPricingEngine, price, tiered_pricing_engine
from salesfunnel.business.catalog.service import CatalogService, catalog_service

__all__ = [
    "CatalogProduct",
    "CatalogPricingTier",
    "PriceTier",
    "ProductPricing",
    "TieredPricingEngine",
    "price",
    "tiered_pricing_engine",
    "CatalogService",
    "catalog_service",
]
