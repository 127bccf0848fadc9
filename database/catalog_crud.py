# database/catalog_crud.py
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Product


class CatalogCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, org_id: str, product_id: str) -> Optional[Product]:
        if not product_id:
            return None
        return await self.session.scalar(
            select(Product).where(Product.org_id == org_id, Product.id == product_id)
        )

    async def list_by_canonical(self, org_id: str, canonical: str, limit: int = 50) -> List[Product]:
        label = (canonical or "").strip().lower()
        if not label:
            return []
        stmt = (
            select(Product)
            .where(
                Product.org_id == org_id,
                func.lower(Product.canonical) == label,
                Product.is_active.is_(True),
            )
            .order_by(Product.brand, Product.variant, Product.id)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())
