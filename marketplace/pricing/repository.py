"""
Accès aux données pour les codes de réduction.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, Optional

import marketplace.infra.supabase_client as supabase_client

from .discount_codes import DiscountCode

logger = logging.getLogger(__name__)

# module marketplace.pricing.repository
class SupabaseDiscountCodeRepository:
    """Table 'discount_codes' (lecture via client anon, écriture via client service)."""

    table = "discount_codes"

    def find_by_code(self, code: str) -> Optional[DiscountCode]:
        try:
            res = (
                supabase_client.get_supabase()
                .table(self.table)
                .select("*")
                .eq("code", code)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("pricing.repository.find_by_code failed code=%s", code)
            return None
        rows = res.data or []
        return DiscountCode.from_row(rows[0]) if rows else None

    def mark_used(self, code: str, user_id: str, used_at: datetime) -> bool:
        """
        Update conditionnel (is_used=false): seule la première commande marque le code.
        Les erreurs remontent à l'appelant (transaction de commande).
        """
        res = (
            supabase_client.get_service_supabase()
            .table(self.table)
            .update({"is_used": True, "used_by": user_id, "used_at": used_at.isoformat()})
            .eq("code", code)
            .eq("is_used", False)
            .execute()
        )
        return bool(res.data)


class MemoryDiscountCodeRepository:
    """Référentiel en mémoire (dev/tests)."""

    def __init__(self, codes: Optional[Iterable[DiscountCode]] = None):
        self._codes: Dict[str, DiscountCode] = {c.code: c for c in (codes or [])}

    def add(self, code: DiscountCode) -> None:
        self._codes[code.code] = code

    def find_by_code(self, code: str) -> Optional[DiscountCode]:
        return self._codes.get(code)

    def mark_used(self, code: str, user_id: str, used_at: datetime) -> bool:
        current = self._codes.get(code)
        if current is None or current.is_used:
            return False
        self._codes[code] = replace(current, is_used=True)
        return True
