"""
Vérification anti-falsification des prix soumis par le client.

- Sans code de réduction: chaque ligne est recalculée isolément (panier d'une ligne)
  et le prix unitaire client doit coïncider à LINE_EPSILON près.
- Avec code: le panier complet est recalculé avec le code et la somme client
  (prix × quantité) est comparée au sous-total après remises à AGGREGATE_EPSILON près.
- Tout écart est signalé au puits d'audit avant de retourner False.
False signifie « rejeter le checkout », jamais un simple avertissement.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from marketplace.audit import sink as audit
from marketplace.catalog.repository import build_cart_lines
from marketplace.errors import CheckoutError, TamperingDetected, ValidationError
from marketplace.pricing import money

logger = logging.getLogger(__name__)

LINE_EPSILON = 0.001
AGGREGATE_EPSILON = 0.01

# Champs de totaux vérifiés et alias acceptés côté client
TOTAL_FIELDS = {
    "final_total": ("final_total", "finalTotal"),
    "subtotal_after_discounts": ("subtotal_after_discounts", "subtotalAfterDiscounts", "subtotal_with_discounts"),
    "tax_amount": ("tax_amount", "taxAmount", "iva_amount"),
    "shipping_cost": ("shipping_cost", "shippingCost"),
}


def _client_value(values: Dict[str, Any], aliases) -> Any:
    for key in aliases:
        if values.get(key) is not None:
            return values[key]
    return 0


def _client_price(item: Dict[str, Any]) -> Decimal:
    try:
        return Decimal(str(item.get("price") if item.get("price") is not None else 0))
    except InvalidOperation:
        raise ValidationError("Prix client invalide")


def _client_quantity(item: Dict[str, Any]) -> Optional[int]:
    """Quantité entière strictement positive, None sinon (absente, 0, négative, non entière)."""
    value = item.get("quantity")
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        return None
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return None
    return quantity if quantity > 0 else None


class PriceVerificationService:
    def __init__(self, calculator, catalog, audit_sink=None):
        self.calculator = calculator
        self.catalog = catalog
        self.audit_sink = audit_sink or audit.LoggingAuditSink()

    def _report(self, reason: str, user_id: str, **fields: Any) -> bool:
        self.audit_sink.record(audit.TAMPERING_DETECTED, reason=reason, user_id=user_id, **fields)
        logger.warning("verification.mismatch reason=%s user_id=%s fields=%s", reason, user_id, fields)
        return False

    def _guarded(self, action: str, user_id: str, func, *args) -> bool:
        try:
            return func(*args)
        except CheckoutError as e:
            self.audit_sink.record(audit.VALIDATION_FAILED, reason=e.code, message=str(e), user_id=user_id, action=action)
            logger.warning("verification.%s rejected user_id=%s code=%s", action, user_id, e.code)
            return False
        except Exception:
            logger.exception("verification.%s failed user_id=%s", action, user_id)
            self.audit_sink.record(audit.VALIDATION_FAILED, reason="internal_error", user_id=user_id, action=action)
            return False

    # --- Vérification des prix unitaires ---
    def verify_item_prices(self, items: List[Dict[str, Any]], user_id: str, coupon_code: Optional[str] = None) -> bool:
        """
        Vérifie les prix client ligne par ligne (sans code) ou sur l'agrégat (avec code).
        Retourne False dès la première anomalie (signalée à l'audit).
        """
        logger.info("verification.items start items=%s user_id=%s has_coupon=%s", len(items or []), user_id, bool(coupon_code))
        if not items:
            return self._report("empty_cart", user_id)
        for index, item in enumerate(items):
            if _client_quantity(item) is None:
                return self._report("invalid_quantity", user_id, item_index=index, quantity=item.get("quantity"))
        if coupon_code:
            return self._guarded("complete_cart", user_id, self._verify_complete_cart, items, user_id, coupon_code)
        for index, item in enumerate(items):
            if not self._guarded("item", user_id, self._verify_item, item, user_id, index):
                return False
        return True

    def _verify_item(self, item: Dict[str, Any], user_id: str, index: int) -> bool:
        product_id = str(item.get("product_id") or item.get("id") or "").strip()
        if not product_id:
            return self._report("product_id_missing", user_id, item_index=index)
        product = self.catalog.get_products([product_id]).get(product_id)
        if not product:
            return self._report("product_not_found", user_id, product_id=product_id, item_index=index)

        priced = self.calculator.price_single_line(product.to_cart_line(_client_quantity(item)), user_id)
        client_price = _client_price(item)
        if not money.within(priced.final_unit_price, client_price, LINE_EPSILON):
            return self._report(
                "unit_price_mismatch", user_id,
                product_id=product_id, item_index=index, quantity=priced.quantity,
                expected=priced.final_unit_price, submitted=float(client_price),
            )
        return True

    def _verify_complete_cart(self, items: List[Dict[str, Any]], user_id: str, coupon_code: str) -> bool:
        pricing = self._price_cart(items, user_id, coupon_code)
        if pricing is None:
            return False
        client_total = sum((_client_price(it) * _client_quantity(it) for it in items), Decimal(0))
        expected = pricing.totals.subtotal_after_discounts
        if not money.within(expected, client_total, AGGREGATE_EPSILON):
            return self._report(
                "cart_total_mismatch", user_id,
                coupon_code=coupon_code, expected=expected, submitted=float(client_total),
            )
        return True

    def _price_cart(self, items: List[Dict[str, Any]], user_id: str, coupon_code: Optional[str]):
        lines = build_cart_lines(self.catalog, items)
        if len(lines) != len(items):
            known = {line["product_id"] for line in lines}
            missing = [str(it.get("product_id") or it.get("id") or "") for it in items if str(it.get("product_id") or it.get("id") or "") not in known]
            self._report("product_not_found", user_id, product_ids=missing)
            return None
        return self.calculator.calculate_cart_totals(lines, user_id, coupon_code)

    # --- Vérification des totaux ---
    def verify_calculated_totals(
        self,
        items: List[Dict[str, Any]],
        client_totals: Dict[str, Any],
        user_id: str,
        coupon_code: Optional[str] = None,
    ) -> bool:
        """
        Vérifie les prix (comme verify_item_prices) puis, champ par champ,
        final_total, subtotal_after_discounts, tax_amount et shipping_cost.
        """
        if not self.verify_item_prices(items, user_id, coupon_code):
            return False
        return self._guarded("totals", user_id, self._verify_totals, items, client_totals or {}, user_id, coupon_code)

    def _verify_totals(self, items, client_totals: Dict[str, Any], user_id: str, coupon_code: Optional[str]) -> bool:
        pricing = self._price_cart(items, user_id, coupon_code)
        if pricing is None:
            return False
        for field, aliases in TOTAL_FIELDS.items():
            expected = getattr(pricing.totals, field)
            submitted = _client_value(client_totals, aliases)
            try:
                matches = money.within(expected, submitted, AGGREGATE_EPSILON)
            except InvalidOperation:
                matches = False
            if not matches:
                return self._report("total_mismatch", user_id, field=field, expected=expected, submitted=submitted)
        return True

    # --- Variantes levant une exception ---
    def ensure_item_prices(self, items, user_id: str, coupon_code: Optional[str] = None) -> None:
        if not self.verify_item_prices(items, user_id, coupon_code):
            raise TamperingDetected("Prix invalides")

    def ensure_calculated_totals(self, items, client_totals, user_id: str, coupon_code: Optional[str] = None) -> None:
        if not self.verify_calculated_totals(items, client_totals, user_id, coupon_code):
            raise TamperingDetected("Totaux invalides")
