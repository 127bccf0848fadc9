# database/clarification_crud.py
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Clarification


class ClarificationCRUD:
    """Append-only clarification log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def token_already_used(self, token_hash: str) -> bool:
        count = await self.session.scalar(
            select(func.count(Clarification.id)).where(Clarification.token_hash == token_hash)
        )
        return bool(count)

    async def append(
        self,
        *,
        org_id: str,
        order_id: str,
        line_index: int,
        choice: int,
        selection: Dict[str, Any],
        options: List[Dict[str, Any]],
        token_hash: str,
        duplicate: bool = False,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Clarification:
        row = Clarification(
            org_id=org_id,
            order_id=order_id,
            line_index=line_index,
            choice=choice,
            selection=selection,
            options=options,
            token_hash=token_hash,
            duplicate=duplicate,
            user_agent=user_agent,
            ip=ip,
        )
        self.session.add(row)
        await self.session.flush()
        return row
