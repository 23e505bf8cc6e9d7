"""
Catalogue produits: prix de base, remise vendeur et vendeur faisant autorité côté serveur.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import marketplace.infra.supabase_client as supabase_client
from marketplace.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Product:
    id: str
    base_price: float
    seller_discount_percentage: float = 0.0
    seller_id: str = ""
    name: str = ""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Product":
        return cls(
            id=str(row.get("id")),
            base_price=float(row.get("price") or 0),
            seller_discount_percentage=float(row.get("discount_percentage") or 0),
            seller_id=str(row.get("seller_id") or ""),
            name=str(row.get("name") or row.get("title") or ""),
        )

    def to_cart_line(self, quantity: int) -> Dict[str, Any]:
        return {
            "product_id": self.id,
            "quantity": quantity,
            "base_price": self.base_price,
            "seller_discount_percentage": self.seller_discount_percentage,
            "seller_id": self.seller_id,
        }


# module marketplace.catalog.repository
class SupabaseProductCatalog:
    table = "products"

    def fetch_products_by_ids(self, ids: List[str]) -> List[dict]:
        """
        Récupère les produits par leurs IDs (table 'products').
        - Retourne [] si ids vide ou en cas d'erreur.
        """
        if not ids:
            return []
        try:
            res = (
                supabase_client.get_supabase()
                .table(self.table)
                .select("id, name, price, discount_percentage, seller_id")
                .in_("id", [str(i) for i in ids])
                .execute()
            )
            return res.data or []
        except Exception:
            logger.exception("catalog.repository.fetch_products_by_ids failed ids=%s", ids)
            return []

    def get_products(self, ids: Iterable[str]) -> Dict[str, Product]:
        """Retourne un dict {id: Product} à partir d'une liste d'IDs."""
        rows = self.fetch_products_by_ids(list(ids))
        return {str(r.get("id")): Product.from_row(r) for r in rows}


class MemoryProductCatalog:
    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products = {p.id: p for p in (products or [])}

    def add(self, product: Product) -> None:
        self._products[product.id] = product

    def get_products(self, ids: Iterable[str]) -> Dict[str, Product]:
        return {str(i): self._products[str(i)] for i in ids if str(i) in self._products}


def build_cart_lines(catalog, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Associe les quantités client aux données produit du catalogue.
    - Les produits introuvables sont ignorés; le calculateur rejettera un panier vide.
    """
    ids = [str(it.get("product_id") or it.get("id") or "") for it in items or []]
    products = catalog.get_products([i for i in ids if i])
    lines = []
    for pid, item in zip(ids, items or []):
        product = products.get(pid)
        if not product:
            logger.warning("catalog.build_cart_lines unknown product_id=%s", pid)
            continue
        try:
            quantity = int(item.get("quantity") or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"Quantité invalide pour {pid}")
        lines.append(product.to_cart_line(quantity))
    return lines
