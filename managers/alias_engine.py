# managers/alias_engine.py
"""
Alias memory: what a customer (or the whole org) means by an informal product phrase.

Two independent stores are consulted in order: the customer's own memory, then the org-wide
memory. Confirmed mappings are written to the customer store and copied into the org store
once the customer's count reaches the promotion threshold. After promotion both counters keep
growing on their own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.logging_config import logger
from database.alias_crud import AliasCRUD
from database.catalog_crud import CatalogCRUD
from managers.errors import LearningFailure
from utils.label_normalizer import has_signal, label_similarity, normalize_label, worth_learning

DEFAULT_PROMOTE_THRESHOLD = 3


@dataclass
class AliasHit:
    scope: str                 # "customer" | "global"
    product_id: str
    occurrence_count: int = 0


@dataclass
class AliasWriteResult:
    customer_count: int
    promoted: bool
    global_count: Optional[int] = None


@dataclass
class LineResolution:
    items: List[Dict[str, Any]]
    resolved: List[int] = field(default_factory=list)
    needs_clarification: List[int] = field(default_factory=list)


async def resolve_alias_for_text(
    session: AsyncSession,
    org_id: str,
    customer_phone: Optional[str],
    wrong_text: str,
) -> Optional[AliasHit]:
    """Customer memory always wins over org memory, whatever the counts."""
    key = normalize_label(wrong_text)
    if not key or not org_id:
        return None

    crud = AliasCRUD(session)
    phone = (customer_phone or "").strip()
    try:
        if phone:
            row = await crud.top_customer_alias(org_id, phone, key)
            if row and row.canonical_product_id:
                return AliasHit("customer", row.canonical_product_id, row.occurrence_count)

        row = await crud.top_global_alias(org_id, key)
        if row and row.canonical_product_id:
            return AliasHit("global", row.canonical_product_id, row.occurrence_count)
    except SQLAlchemyError as e:
        logger.warning(f"alias_engine ::::: resolve_alias_for_text ::::: lookup failed for key={key}: {e}")
    return None


async def record_alias_confirmation(
    session: AsyncSession,
    org_id: str,
    customer_phone: Optional[str],
    wrong_text: str,
    product_id: str,
    confidence: float = 1.0,
    promote_threshold: int = DEFAULT_PROMOTE_THRESHOLD,
) -> Optional[AliasWriteResult]:
    """
    Record a human-confirmed mapping. Commits on success.
    Storage failures are logged and swallowed: learning never fails the caller.
    """
    key = normalize_label(wrong_text)
    phone = (customer_phone or "").strip()
    if not key or not phone or not product_id:
        return None

    crud = AliasCRUD(session)
    try:
        count = await crud.upsert_customer_alias(org_id, phone, key, product_id)
        result = AliasWriteResult(customer_count=count, promoted=False)
        if count >= max(1, promote_threshold):
            result.global_count = await crud.upsert_global_alias(org_id, key, product_id, confidence)
            result.promoted = True
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        failure = LearningFailure(f"alias write failed for key={key}: {e}")
        logger.warning(f"alias_engine ::::: record_alias_confirmation ::::: {failure}")
        return None

    logger.info(
        f"alias_engine ::::: record_alias_confirmation ::::: org={org_id} key={key} "
        f"product={product_id} count={result.customer_count} promoted={result.promoted}"
    )
    return result


async def learn_aliases_from_items(
    session: AsyncSession,
    org_id: str,
    customer_phone: Optional[str],
    text: str,
    items: List[Dict[str, Any]],
    promote_threshold: int = DEFAULT_PROMOTE_THRESHOLD,
) -> int:
    """Learn from confirmed order items whose label is close to, but not already, what was typed."""
    wrong_raw = (text or "").strip()
    wrong_norm = normalize_label(wrong_raw)
    if not has_signal(wrong_norm) or not items:
        return 0

    learned = 0
    for it in items:
        if not it or not it.get("product_id"):
            continue
        label_raw = str(it.get("canonical") or it.get("name") or "").strip()
        if not has_signal(normalize_label(label_raw)):
            continue

        score = label_similarity(wrong_norm, label_raw)
        if not worth_learning(score):
            continue

        res = await record_alias_confirmation(
            session,
            org_id,
            customer_phone,
            wrong_raw,
            str(it["product_id"]),
            confidence=score,
            promote_threshold=promote_threshold,
        )
        if res is not None:
            learned += 1
    return learned


async def resolve_order_lines(
    session: AsyncSession,
    org_id: str,
    customer_phone: Optional[str],
    items: List[Dict[str, Any]],
) -> LineResolution:
    """
    Best-effort auto-resolve of parsed lines through alias memory.
    Fields the parser already filled are never overwritten.
    """
    catalog = CatalogCRUD(session)
    out = LineResolution(items=[dict(it) for it in items])

    for idx, line in enumerate(out.items):
        if not line.get("product_id"):
            raw = str(line.get("name") or line.get("canonical") or "").strip()
            hit = await resolve_alias_for_text(session, org_id, customer_phone, raw) if raw else None
            if hit:
                product = await catalog.get_product(org_id, hit.product_id)
                line["product_id"] = hit.product_id
                if product is not None:
                    for attr in ("canonical", "brand", "variant", "unit"):
                        if not line.get(attr) and getattr(product, attr, None):
                            line[attr] = getattr(product, attr)
                out.resolved.append(idx)
                logger.info(
                    f"alias_engine ::::: resolve_order_lines ::::: line={idx} text={raw!r} "
                    f"-> {hit.product_id} ({hit.scope})"
                )

        if not line.get("product_id") and (not line.get("brand") or not line.get("variant")):
            out.needs_clarification.append(idx)

    return out


# ---------- fire-and-forget runners (own session per job) ----------

async def run_alias_confirmation(sessionmaker: async_sessionmaker, **kwargs) -> Optional[AliasWriteResult]:
    try:
        async with sessionmaker() as session:
            return await record_alias_confirmation(session, **kwargs)
    except Exception as e:
        logger.warning(f"alias_engine ::::: run_alias_confirmation ::::: learning dropped: {e}")
        return None


async def run_learn_from_items(sessionmaker: async_sessionmaker, **kwargs) -> int:
    try:
        async with sessionmaker() as session:
            return await learn_aliases_from_items(session, **kwargs)
    except Exception as e:
        logger.warning(f"alias_engine ::::: run_learn_from_items ::::: learning dropped: {e}")
        return 0
