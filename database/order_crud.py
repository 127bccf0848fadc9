# database/order_crud.py
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Order, _utcnow


class OrderCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_order(self, order_id: str, org_id: Optional[str] = None) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if org_id is not None:
            stmt = stmt.where(Order.org_id == org_id)
        return (await self.session.execute(stmt)).scalars().first()

    async def create_order(
        self,
        org_id: str,
        items: List[Dict[str, Any]],
        *,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None,
        source_msg_id: Optional[str] = None,
        raw_text: Optional[str] = None,
        parse_reason: Optional[str] = "ai",
    ) -> Order:
        order = Order(
            org_id=org_id,
            items=[dict(it) for it in items],
            customer_phone=customer_phone,
            customer_name=customer_name,
            source_msg_id=source_msg_id,
            raw_text=raw_text,
            parse_reason=parse_reason,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def replace_items(
        self,
        order_id: str,
        org_id: str,
        items: List[Dict[str, Any]],
        parse_reason: Optional[str] = None,
    ) -> int:
        """Overwrite the whole items array. Last write wins; no version check."""
        values: Dict[str, Any] = {"items": [dict(it) for it in items], "updated_at": _utcnow()}
        if parse_reason is not None:
            values["parse_reason"] = parse_reason
        res = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.org_id == org_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount or 0
