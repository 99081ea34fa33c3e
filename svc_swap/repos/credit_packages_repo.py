from __future__ import annotations

from typing import Any, Dict, List

from .base_repo import BaseRepository


class CreditPackagesRepo(BaseRepository):
    """Purchasable credit bundles. Prices are stored in cents."""

    async def list_active(self) -> List[Dict[str, Any]]:
        rows = await self.execute_queries(
            """
            SELECT package_id, name, credits, price_usd, stripe_price_id, stripe_product_id,
                   description, popular
            FROM credit_packages
            WHERE active = true
            ORDER BY price_usd ASC
            """
        )
        return self.convert_db_rows(rows)
