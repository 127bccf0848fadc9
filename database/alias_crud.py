# database/alias_crud.py
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import CustomerAlias, ProductAlias, _utcnow


class AliasCRUD:
    """
    Two independent alias stores. Keys passed in here are already normalized.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self, model):
        dialect = self.session.bind.dialect.name if self.session.bind is not None else "postgresql"
        if dialect == "sqlite":
            return sqlite_insert(model)
        return pg_insert(model)

    # --------- reads ----------
    async def top_customer_alias(self, org_id: str, customer_phone: str, key: str) -> Optional[CustomerAlias]:
        stmt = (
            select(CustomerAlias)
            .where(
                CustomerAlias.org_id == org_id,
                CustomerAlias.customer_phone == customer_phone,
                CustomerAlias.wrong_text == key,
            )
            .order_by(CustomerAlias.occurrence_count.desc())
            .limit(1)
        )
        return (await self.session.execute(stmt)).scalars().first()

    async def top_global_alias(self, org_id: str, key: str) -> Optional[ProductAlias]:
        stmt = (
            select(ProductAlias)
            .where(ProductAlias.org_id == org_id, ProductAlias.wrong_text == key)
            .order_by(ProductAlias.occurrence_count.desc())
            .limit(1)
        )
        return (await self.session.execute(stmt)).scalars().first()

    # --------- writes ----------
    async def upsert_customer_alias(self, org_id: str, customer_phone: str, key: str, product_id: str) -> int:
        """Insert with count 1 or bump the count; latest confirmation wins the product id.
        Returns the count after the write."""
        now = _utcnow()
        ins = self._insert(CustomerAlias).values(
            org_id=org_id,
            customer_phone=customer_phone,
            wrong_text=key,
            canonical_product_id=product_id,
            occurrence_count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = ins.on_conflict_do_update(
            index_elements=[CustomerAlias.org_id, CustomerAlias.customer_phone, CustomerAlias.wrong_text],
            set_={
                "canonical_product_id": product_id,
                "occurrence_count": CustomerAlias.occurrence_count + 1,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        count = await self.session.scalar(
            select(CustomerAlias.occurrence_count).where(
                CustomerAlias.org_id == org_id,
                CustomerAlias.customer_phone == customer_phone,
                CustomerAlias.wrong_text == key,
            )
        )
        return int(count or 1)

    async def upsert_global_alias(self, org_id: str, key: str, product_id: str, confidence: float) -> int:
        now = _utcnow()
        ins = self._insert(ProductAlias).values(
            org_id=org_id,
            wrong_text=key,
            canonical_product_id=product_id,
            occurrence_count=1,
            confidence=confidence,
            created_at=now,
            updated_at=now,
        )
        stmt = ins.on_conflict_do_update(
            index_elements=[ProductAlias.org_id, ProductAlias.wrong_text],
            set_={
                "canonical_product_id": product_id,
                "occurrence_count": ProductAlias.occurrence_count + 1,
                "confidence": confidence,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        count = await self.session.scalar(
            select(ProductAlias.occurrence_count).where(
                ProductAlias.org_id == org_id, ProductAlias.wrong_text == key
            )
        )
        return int(count or 1)
