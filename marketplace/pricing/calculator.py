"""
Calculateur de prix: source unique de vérité pour les totaux d'un panier.

Séquence (ordre fixe, remises multiplicatives):
  1) remise vendeur (%) sur le prix de base -> prix après vendeur
  2) × quantité -> sous-total après vendeur
  3) palier de volume (%) sur ce sous-total -> sous-total après volume
  4) prix unitaire final = sous-total après volume / quantité
  5) code de réduction éventuel sur l'agrégat des lignes
  6) TVA sur le sous-total après remises, puis livraison
Tous les calculs intermédiaires sont faits en centimes entiers.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from marketplace.errors import DiscountCodeRejected, ValidationError

from . import money
from .models import CartLine, CartPricing, DiscountBreakdown, PricedLine, SellerTotals, Totals

logger = logging.getLogger(__name__)

LineInput = Union[CartLine, Dict[str, Any]]


def _validate_line(line: CartLine, index: int) -> None:
    if not line.product_id:
        raise ValidationError(f"Ligne {index}: product_id manquant")
    if line.quantity <= 0:
        raise ValidationError(f"Ligne {index}: quantité invalide ({line.quantity})")
    if line.base_price <= 0:
        raise ValidationError(f"Ligne {index}: prix invalide ({line.base_price})")
    if not 0 <= line.seller_discount_percentage <= 100:
        raise ValidationError(f"Ligne {index}: remise vendeur hors bornes ({line.seller_discount_percentage})")


def normalize_lines(lines: Iterable[LineInput]) -> List[CartLine]:
    """Convertit et valide les lignes; soulève ValidationError au premier défaut."""
    normalized = [line if isinstance(line, CartLine) else CartLine.from_dict(line) for line in (lines or [])]
    if not normalized:
        raise ValidationError("Panier vide")
    for index, line in enumerate(normalized):
        _validate_line(line, index)
    return normalized


class PricingCalculator:
    def __init__(self, config_provider, discount_codes=None, tier_catalog=None):
        """
        - config_provider: expose pricing_config() et volume_tier_catalog()
          (ConfigurationService ou StaticConfigProvider).
        - discount_codes: DiscountCodeService (optionnel, requis pour les codes).
        - tier_catalog: surcharge explicite du catalogue de paliers.
        """
        self.config_provider = config_provider
        self.discount_codes = discount_codes
        self.tier_catalog = tier_catalog

    def _tiers(self):
        return self.tier_catalog or self.config_provider.volume_tier_catalog()

    def _price_line(self, line: CartLine, tiers) -> Dict[str, Any]:
        base_cents = money.to_cents(line.base_price)
        seller_unit_discount = money.percentage_of(base_cents, line.seller_discount_percentage)
        after_seller_unit = base_cents - seller_unit_discount
        subtotal_after_seller = after_seller_unit * line.quantity

        tier = tiers.tier_for(line.product_id, line.quantity)
        volume_percentage = tier.percentage if tier else 0.0
        volume_cents = money.percentage_of(subtotal_after_seller, volume_percentage)
        subtotal_after_volume = subtotal_after_seller - volume_cents

        unit_cents = money.divide(subtotal_after_volume, line.quantity)
        line_cents = unit_cents * line.quantity
        return {
            "base_cents": base_cents,
            "seller_unit_discount": seller_unit_discount,
            "volume_savings": subtotal_after_seller - line_cents,
            "unit_cents": unit_cents,
            "line_cents": line_cents,
            "priced": PricedLine(
                product_id=line.product_id,
                quantity=line.quantity,
                base_price=money.from_cents(base_cents),
                seller_discount_percentage=float(line.seller_discount_percentage),
                seller_id=line.seller_id,
                seller_discount_amount=money.from_cents(seller_unit_discount),
                volume_discount_percentage=float(volume_percentage),
                volume_discount_label=tier.label if tier else None,
                volume_savings_amount=money.from_cents(subtotal_after_seller - line_cents),
                final_unit_price=money.from_cents(unit_cents),
                final_line_subtotal=money.from_cents(line_cents),
            ),
        }

    def price_single_line(self, line: LineInput, user_id: str = "") -> PricedLine:
        """Prix d'une ligne isolée (panier d'une seule ligne, sans code)."""
        return self.calculate_cart_totals([line], user_id).lines[0]

    def calculate_cart_totals(
        self,
        lines: Iterable[LineInput],
        user_id: str,
        discount_code: Optional[str] = None,
    ) -> CartPricing:
        """
        Calcule lignes et totaux d'un panier.
        - Soulève ValidationError (ligne invalide) ou DiscountCodeRejected (code refusé).
        - Aucun total partiel n'est retourné en cas d'erreur.
        """
        cart_lines = normalize_lines(lines)
        config = self.config_provider.pricing_config()
        tiers = self._tiers()
        logger.info("pricing.calculate start items=%s user_id=%s code=%s", len(cart_lines), user_id, bool(discount_code))

        priced: List[PricedLine] = []
        original = seller_total = volume_total = lines_sum = 0
        per_seller: Dict[str, Dict[str, int]] = {}
        for line in cart_lines:
            result = self._price_line(line, tiers)
            priced.append(result["priced"])
            seller_discount = result["seller_unit_discount"] * line.quantity
            original += result["base_cents"] * line.quantity
            seller_total += seller_discount
            volume_total += result["volume_savings"]
            lines_sum += result["line_cents"]
            bucket = per_seller.setdefault(line.seller_id, {"subtotal": 0, "seller_discount": 0, "volume_discount": 0})
            bucket["subtotal"] += result["line_cents"]
            bucket["seller_discount"] += seller_discount
            bucket["volume_discount"] += result["volume_savings"]

        discount = None
        code_cents = 0
        if discount_code:
            if self.discount_codes is None:
                raise DiscountCodeRejected("Codes de réduction indisponibles")
            code = self.discount_codes.resolve(discount_code, user_id, lines_sum)
            code_cents = code.discount_cents(lines_sum)
            discount = DiscountBreakdown(code=code.code, kind=code.kind, value=code.value, amount=money.from_cents(code_cents))

        subtotal_after = lines_sum - code_cents
        tax_cents = money.percentage_of(subtotal_after, config.tax_rate_percentage)

        if config.shipping_enabled:
            threshold_cents = money.to_cents(config.free_shipping_threshold)
            free_shipping = subtotal_after >= threshold_cents
            shipping_cents = 0 if free_shipping else money.to_cents(config.default_shipping_cost)
        else:
            threshold_cents = 0
            free_shipping = False
            shipping_cents = 0

        final_cents = subtotal_after + tax_cents + shipping_cents
        totals = Totals(
            subtotal_original=money.from_cents(original),
            subtotal_after_discounts=money.from_cents(subtotal_after),
            total_seller_discount=money.from_cents(seller_total),
            total_volume_discount=money.from_cents(volume_total),
            discount_code_amount=money.from_cents(code_cents),
            tax_rate_percentage=float(config.tax_rate_percentage),
            tax_amount=money.from_cents(tax_cents),
            shipping_cost=money.from_cents(shipping_cents),
            free_shipping_applied=free_shipping,
            free_shipping_threshold=money.from_cents(threshold_cents),
            final_total=money.from_cents(final_cents),
            per_seller_totals={
                sid: SellerTotals(**{k: money.from_cents(v) for k, v in bucket.items()})
                for sid, bucket in per_seller.items()
            },
        )
        logger.info(
            "pricing.calculate done original=%s subtotal=%s tax=%s shipping=%s final=%s",
            totals.subtotal_original, totals.subtotal_after_discounts, totals.tax_amount,
            totals.shipping_cost, totals.final_total,
        )
        return CartPricing(lines=priced, totals=totals, discount=discount)
