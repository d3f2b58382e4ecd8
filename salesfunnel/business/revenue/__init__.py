from salesfunnel.business.revenue.models import RevenueOrder, RevenueQuote, RevenueQuoteApproval, RevenueQuoteLine

__all__ = [
    "RevenueQuote",
    "RevenueQuoteLine",
    "RevenueQuoteApproval",
    "RevenueOrder",
]
