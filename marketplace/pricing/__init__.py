"""
Module 'pricing' (feature-first): point d'entrée public.
Réunit types de données, arithmétique en centimes, paliers de volume,
codes de réduction et calculateur.
"""

from .models import CartLine, PricedLine, SellerTotals, DiscountBreakdown, Totals, CartPricing, VolumeDiscountTier
from .tiers import VolumeTierCatalog, parse_tiers
from .discount_codes import DiscountCode, DiscountCodeService
from .calculator import PricingCalculator, normalize_lines

__all__ = [
    # models
    "CartLine",
    "PricedLine",
    "SellerTotals",
    "DiscountBreakdown",
    "Totals",
    "CartPricing",
    "VolumeDiscountTier",
    # tiers
    "VolumeTierCatalog",
    "parse_tiers",
    # discount codes
    "DiscountCode",
    "DiscountCodeService",
    # calculator
    "PricingCalculator",
    "normalize_lines",
]
