# app/routers/ingest.py
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.db import get_db, get_session
from app.logging_config import logger
from database.order_crud import OrderCRUD
from managers.alias_engine import resolve_order_lines, run_learn_from_items
from managers.clarification_manager import ClarificationManager
from managers.errors import ClarificationError
from utils.message_dedup import BoundedSeenSet
from whatsapp.builder_out import send_clarify_link

router = APIRouter(prefix="/api", tags=["ingest"])

_seen_messages: Optional[BoundedSeenSet] = None


def get_message_dedup(settings: Settings = Depends(get_settings)) -> BoundedSeenSet:
    global _seen_messages
    if _seen_messages is None:
        _seen_messages = BoundedSeenSet(settings.DEDUP_CAPACITY)
    return _seen_messages


class ParsedItem(BaseModel):
    name: Optional[str] = None
    canonical: Optional[str] = None
    brand: Optional[str] = None
    variant: Optional[str] = None
    qty: Optional[float] = None
    unit: Optional[str] = None
    product_id: Optional[str] = None


class IngestRequest(BaseModel):
    org_id: str
    msg_id: Optional[str] = None
    from_phone: Optional[str] = None
    customer_name: Optional[str] = None
    text: str = ""
    items: List[ParsedItem] = Field(default_factory=list)
    deliver: bool = False


@router.post("/ingest")
async def ingest_parsed_order(
    payload: IngestRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    dedup: BoundedSeenSet = Depends(get_message_dedup),
):
    """
    Store the upstream parser's line items as a new order, auto-resolve what alias memory
    knows, and mint one clarification link per line that is still ambiguous.
    """
    if payload.msg_id and dedup.seen_before(payload.msg_id):
        logger.info(f"ingest ::::: ingest_parsed_order ::::: skipping already-seen msg {payload.msg_id}")
        return {"ok": True, "duplicate": True}

    items = [it.model_dump() for it in payload.items]
    try:
        resolution = await resolve_order_lines(db, payload.org_id, payload.from_phone, items)
        order = await OrderCRUD(db).create_order(
            payload.org_id,
            resolution.items,
            customer_phone=payload.from_phone,
            customer_name=payload.customer_name,
            source_msg_id=payload.msg_id,
            raw_text=payload.text,
            parse_reason="alias_resolved" if resolution.resolved else "ai",
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        # the caller will retry this message; it must not be answered as a duplicate
        if payload.msg_id:
            dedup.forget(payload.msg_id)
        logger.error(f"ingest ::::: ingest_parsed_order ::::: store failed: {e}")
        return JSONResponse({"ok": False, "error": "server_error"}, status_code=500)

    manager = ClarificationManager(db, settings)
    clarify = []
    for idx in resolution.needs_clarification:
        try:
            link = await manager.issue_link(order.id, idx)
        except ClarificationError as e:
            logger.warning(f"ingest ::::: ingest_parsed_order ::::: no link for line {idx}: {e.code}")
            continue
        clarify.append({"line_index": idx, "url": link.url})
        if payload.deliver and payload.from_phone:
            background_tasks.add_task(send_clarify_link, payload.from_phone, link.url, link.options[0].canonical)

    logger.info(
        f"ingest ::::: ingest_parsed_order ::::: order={order.id} lines={len(items)} "
        f"resolved={resolution.resolved} clarify={[c['line_index'] for c in clarify]}"
    )
    return {"ok": True, "order_id": order.id, "resolved": resolution.resolved, "clarify": clarify}


@router.post("/orders/{order_id}/confirm")
async def confirm_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    sessionmaker: async_sessionmaker = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """The customer confirmed the order: learn aliases from what they typed vs. what was matched."""
    try:
        order = await OrderCRUD(db).get_order(order_id)
    except SQLAlchemyError as e:
        logger.error(f"ingest ::::: confirm_order ::::: load failed: {e}")
        return JSONResponse({"ok": False, "error": "server_error"}, status_code=500)
    if not order:
        return JSONResponse({"ok": False, "error": "order_not_found"}, status_code=404)

    items = list(order.items or [])
    candidates = [it for it in items if it.get("product_id")]
    if order.customer_phone and order.raw_text and candidates:
        background_tasks.add_task(
            run_learn_from_items,
            sessionmaker,
            org_id=order.org_id,
            customer_phone=order.customer_phone,
            text=order.raw_text,
            items=candidates,
            promote_threshold=settings.ALIAS_PROMOTE_THRESHOLD,
        )
    return {"ok": True, "order_id": order.id, "learning_candidates": len(candidates)}
