"""
Types de données du calcul de prix (lignes de panier, lignes calculées, totaux).
Tous les montants sont exposés en décimal (2 chiffres) mais calculés en centimes.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from marketplace.errors import ValidationError


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    base_price: float
    seller_discount_percentage: float = 0.0
    seller_id: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        """
        Construit une ligne depuis un dict client/DB.
        - Accepte product_id|productId|id, base_price|price, seller_discount_percentage|discount_percentage.
        - Soulève ValidationError si les champs numériques ne sont pas convertibles.
        """
        try:
            return cls(
                product_id=str(_first(data, "product_id", "productId", "id", default="") or "").strip(),
                quantity=int(_first(data, "quantity", default=0)),
                base_price=float(_first(data, "base_price", "basePrice", "price", default=0)),
                seller_discount_percentage=float(
                    _first(data, "seller_discount_percentage", "sellerDiscountPercentage", "discount_percentage", default=0)
                ),
                seller_id=str(_first(data, "seller_id", "sellerId", default="") or ""),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Ligne de panier invalide: {e}")


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    quantity: int
    base_price: float
    seller_discount_percentage: float
    seller_id: str
    seller_discount_amount: float
    volume_discount_percentage: float
    volume_discount_label: Optional[str]
    volume_savings_amount: float
    final_unit_price: float
    final_line_subtotal: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricedLine":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class SellerTotals:
    subtotal: float = 0.0
    seller_discount: float = 0.0
    volume_discount: float = 0.0


@dataclass(frozen=True)
class DiscountBreakdown:
    code: str
    kind: str
    value: float
    amount: float


@dataclass(frozen=True)
class Totals:
    subtotal_original: float
    subtotal_after_discounts: float
    total_seller_discount: float
    total_volume_discount: float
    discount_code_amount: float
    tax_rate_percentage: float
    tax_amount: float
    shipping_cost: float
    free_shipping_applied: bool
    free_shipping_threshold: float
    final_total: float
    per_seller_totals: Dict[str, SellerTotals] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Totals":
        values = {k: data[k] for k in cls.__dataclass_fields__ if k != "per_seller_totals"}
        per_seller = {
            str(sid): SellerTotals(**st) for sid, st in (data.get("per_seller_totals") or {}).items()
        }
        return cls(per_seller_totals=per_seller, **values)


@dataclass(frozen=True)
class CartPricing:
    lines: List[PricedLine]
    totals: Totals
    discount: Optional[DiscountBreakdown] = None

    def lines_by_seller(self) -> Dict[str, List[PricedLine]]:
        """Regroupe les lignes par vendeur (découpage multi-vendeurs en aval)."""
        grouped: Dict[str, List[PricedLine]] = {}
        for line in self.lines:
            grouped.setdefault(line.seller_id, []).append(line)
        return grouped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "totals": self.totals.to_dict(),
            "discount": asdict(self.discount) if self.discount else None,
        }


@dataclass(frozen=True)
class VolumeDiscountTier:
    threshold_quantity: int
    percentage: float
    label: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VolumeDiscountTier":
        threshold = int(_first(data, "threshold_quantity", "quantity", default=0))
        percentage = float(_first(data, "percentage", "discount", default=0))
        label = str(data.get("label") or f"Remise {threshold}+")
        return cls(threshold_quantity=threshold, percentage=percentage, label=label)
