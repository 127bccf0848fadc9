# managers/clarification_manager.py
"""
Clarification workflow for one order line.

    NEEDS_CLARIFICATION --issue_link--> LINK_ISSUED --submit--> RESOLVED
                                             |
                                             +--bad/expired token--> EXPIRED

The signed token is the only record of a pending clarification. Validation errors on
submit leave the link usable; token and missing-order errors are terminal.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.logging_config import logger
from database.catalog_crud import CatalogCRUD
from database.clarification_crud import ClarificationCRUD
from database.models import Order
from database.order_crud import OrderCRUD
from managers.alias_engine import resolve_alias_for_text
from managers.errors import (
    LineValidationError,
    OrderNotFoundError,
    StorageTransientError,
    TokenInvalidError,
)
from utils.clarify_token import (
    AskFlags,
    ClarifyOption,
    ClarifyPayload,
    sign_clarify_token,
    token_hash,
    verify_clarify_token,
)
from utils.label_normalizer import label_similarity
from utils.option_processor import process_options

FREEFORM_CHOICE = -1


class ClarifyState(str, Enum):
    NEEDS_CLARIFICATION = "needs_clarification"
    LINK_ISSUED = "link_issued"
    RESOLVED = "resolved"
    EXPIRED = "expired"


@dataclass
class ClarifyLink:
    url: str
    token: str
    order_id: str
    line_index: int
    options: List[ClarifyOption]
    ask: AskFlags
    expires_at: int
    customer_phone: Optional[str] = None
    state: ClarifyState = ClarifyState.LINK_ISSUED


@dataclass
class SubmitOutcome:
    order_id: str
    line_index: int
    choice: int
    selection: ClarifyOption
    line: Dict[str, Any]
    duplicate: bool = False
    # kwargs for run_alias_confirmation, None when there is nothing to learn
    learning: Optional[Dict[str, Any]] = None
    state: ClarifyState = ClarifyState.RESOLVED


def _option_label(base: str, brand: Optional[str], variant: Optional[str]) -> str:
    label = base
    if brand:
        label = f"{label} ({brand})"
    if variant:
        label = f"{label} {variant}"
    return label


def _blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _parse_choice(raw: Any) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        raise LineValidationError("Invalid choice.", code="invalid_choice")


def open_clarify_link(
    token: str, settings: Settings, *, now: Optional[float] = None
) -> Tuple[ClarifyPayload, List[ClarifyOption]]:
    """Verify a token and rebuild the options exactly as they were shown. Touches no storage."""
    payload = verify_clarify_token(token, settings.CLARIFY_SECRET, now=now)
    if payload is None:
        raise TokenInvalidError()
    return payload, process_options(payload.options, settings.CLARIFY_MAX_OPTIONS)


class ClarificationManager:
    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings
        self.orders = OrderCRUD(session)
        self.catalog = CatalogCRUD(session)
        self.log = ClarificationCRUD(session)

    # ------------------------------------------------------------------
    # NEEDS_CLARIFICATION -> LINK_ISSUED
    # ------------------------------------------------------------------
    async def build_options(self, order: Order, line_index: int) -> Tuple[List[ClarifyOption], AskFlags]:
        """Current best guess plus catalog alternatives for the missing field(s), ranked."""
        items = list(order.items or [])
        line = items[line_index]
        base = str(line.get("canonical") or line.get("name") or "").strip()
        raw_text = str(line.get("name") or base)

        ask = AskFlags(brand=_blank(line.get("brand")), variant=_blank(line.get("variant")))

        raw: List[ClarifyOption] = [
            ClarifyOption(
                label=_option_label(base, line.get("brand"), line.get("variant")),
                canonical=base,
                brand=line.get("brand"),
                variant=line.get("variant"),
                unit=line.get("unit"),
                product_id=line.get("product_id"),
            )
        ]

        hit = await resolve_alias_for_text(self.session, order.org_id, order.customer_phone, raw_text)
        for product in await self.catalog.list_by_canonical(order.org_id, base):
            if not ((ask.brand and product.brand) or (ask.variant and product.variant)):
                continue
            # keep alternatives consistent with what the customer already told us
            if not ask.brand and (product.brand or "").lower() != str(line.get("brand") or "").lower():
                continue
            if not ask.variant and (product.variant or "").lower() != str(line.get("variant") or "").lower():
                continue
            label = product.display_name or _option_label(base, product.brand, product.variant)
            is_hit = bool(hit and hit.product_id == product.id)
            raw.append(
                ClarifyOption(
                    label=label,
                    canonical=base,
                    brand=product.brand,
                    variant=product.variant,
                    unit=product.unit,
                    product_id=product.id,
                    score=1.0 if is_hit else round(label_similarity(raw_text, label), 4),
                    recommended=is_hit,
                )
            )

        return process_options(raw, self.settings.CLARIFY_MAX_OPTIONS), ask

    def make_link(
        self,
        order: Order,
        line_index: int,
        options: Sequence[ClarifyOption],
        ask: AskFlags,
        *,
        ttl_seconds: Optional[int] = None,
        allow_other: bool = True,
        now: Optional[float] = None,
    ) -> ClarifyLink:
        ranked = process_options(options, self.settings.CLARIFY_MAX_OPTIONS)
        if not ranked:
            raise LineValidationError("No options available.", code="no_options_available", status_code=422)

        ttl = ttl_seconds if ttl_seconds is not None else self.settings.CLARIFY_TTL_SECONDS
        issued = time.time() if now is None else now
        payload = ClarifyPayload(
            org_id=order.org_id,
            order_id=order.id,
            line_index=line_index,
            options=ranked,
            ask=ask,
            allow_other=allow_other,
            customer_phone=order.customer_phone,
            customer_name=order.customer_name,
            exp=int(issued + ttl),
        )
        token = sign_clarify_token(payload, self.settings.CLARIFY_SECRET)
        url = f"{self.settings.PUBLIC_BASE_URL}/c/{token}"
        logger.info(
            f"clarification_manager ::::: make_link ::::: order={order.id} line={line_index} "
            f"options={len(ranked)} ask_brand={ask.brand} ask_variant={ask.variant}"
        )
        return ClarifyLink(
            url=url,
            token=token,
            order_id=order.id,
            line_index=line_index,
            options=ranked,
            ask=ask,
            expires_at=payload.exp,
            customer_phone=order.customer_phone,
        )

    async def issue_link(
        self,
        order_id: str,
        line_index: int,
        *,
        options: Optional[Sequence[ClarifyOption]] = None,
        ttl_seconds: Optional[int] = None,
        now: Optional[float] = None,
    ) -> ClarifyLink:
        """Mint a link for one line. Caller-supplied options replace the synthesized ones."""
        try:
            order = await self.orders.get_order(order_id)
        except SQLAlchemyError as e:
            logger.error(f"clarification_manager ::::: issue_link ::::: order load failed: {e}")
            raise StorageTransientError()
        if not order:
            raise OrderNotFoundError()

        items = list(order.items or [])
        if not isinstance(line_index, int) or line_index < 0 or line_index >= len(items):
            raise LineValidationError("Line index out of range.", code="line_index_invalid")

        line = items[line_index]
        if _blank(line.get("canonical")) and _blank(line.get("name")):
            raise LineValidationError("Line has no name.", code="line_has_no_name", status_code=422)

        if options:
            ask = AskFlags(brand=_blank(line.get("brand")), variant=_blank(line.get("variant")))
            candidates = list(options)
        else:
            candidates, ask = await self.build_options(order, line_index)

        return self.make_link(order, line_index, candidates, ask, ttl_seconds=ttl_seconds, now=now)

    # ------------------------------------------------------------------
    # LINK_ISSUED -> RESOLVED | EXPIRED
    # ------------------------------------------------------------------
    def open_link(self, token: str, *, now: Optional[float] = None) -> Tuple[ClarifyPayload, List[ClarifyOption]]:
        return open_clarify_link(token, self.settings, now=now)

    def _select(
        self,
        payload: ClarifyPayload,
        options: List[ClarifyOption],
        choice: int,
        other_brand: Optional[str],
        other_variant: Optional[str],
    ) -> ClarifyOption:
        if 0 <= choice < len(options):
            return options[choice]

        if choice == FREEFORM_CHOICE and payload.allow_other:
            ob = (other_brand or "").strip() or None
            ov = (other_variant or "").strip() or None
            if (payload.ask.brand and not ob) or (payload.ask.variant and not ov):
                raise LineValidationError("Please fill the required field(s).", code="missing_required_field")
            canonical = options[0].canonical if options else "item"
            return ClarifyOption(
                label=" ".join(p for p in (canonical, ob, ov) if p),
                canonical=canonical,
                brand=ob,
                variant=ov,
            )

        raise LineValidationError("Invalid choice.", code="invalid_choice")

    async def submit(
        self,
        token: str,
        choice: Any,
        *,
        other_brand: Optional[str] = None,
        other_variant: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
        now: Optional[float] = None,
    ) -> SubmitOutcome:
        payload, options = self.open_link(token, now=now)
        choice_idx = _parse_choice(choice)
        selected = self._select(payload, options, choice_idx, other_brand, other_variant)

        try:
            order = await self.orders.get_order(payload.order_id, payload.org_id)
        except SQLAlchemyError as e:
            logger.error(f"clarification_manager ::::: submit ::::: order load failed: {e}")
            raise StorageTransientError()
        if not order:
            raise OrderNotFoundError()

        items = list(order.items or [])
        idx = payload.line_index
        if idx < 0 or idx >= len(items):
            raise LineValidationError("Line index out of range.", code="line_index_invalid")

        before = dict(items[idx])
        line = dict(before)
        line["canonical"] = selected.canonical or line.get("canonical") or line.get("name") or ""
        if payload.ask.brand:
            line["brand"] = selected.brand
        if payload.ask.variant:
            line["variant"] = selected.variant
        if selected.product_id:
            line["product_id"] = selected.product_id
        items[idx] = line

        parse_reason = "clarified_other" if choice_idx == FREEFORM_CHOICE else "clarified_choice"
        digest = token_hash(token)
        try:
            duplicate = await self.log.token_already_used(digest)
            updated = await self.orders.replace_items(order.id, order.org_id, items, parse_reason=parse_reason)
            if not updated:
                # deleted between the read and the write
                await self.session.rollback()
                raise OrderNotFoundError()
            await self.log.append(
                org_id=order.org_id,
                order_id=order.id,
                line_index=idx,
                choice=choice_idx,
                selection=selected.model_dump(mode="json"),
                options=[o.model_dump(mode="json") for o in options],
                token_hash=digest,
                duplicate=duplicate,
                user_agent=user_agent,
                ip=ip,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"clarification_manager ::::: submit ::::: apply failed for order={order.id}: {e}")
            raise StorageTransientError()

        if duplicate:
            logger.info(f"clarification_manager ::::: submit ::::: duplicate token use order={order.id} line={idx}")
        logger.info(
            f"clarification_manager ::::: submit ::::: order={order.id} line={idx} choice={choice_idx} "
            f"brand={line.get('brand')} variant={line.get('variant')}"
        )

        return SubmitOutcome(
            order_id=order.id,
            line_index=idx,
            choice=choice_idx,
            selection=selected,
            line=line,
            duplicate=duplicate,
            learning=self._learning_job(order, payload, before, selected),
        )

    def _learning_job(
        self,
        order: Order,
        payload: ClarifyPayload,
        before: Dict[str, Any],
        selected: ClarifyOption,
    ) -> Optional[Dict[str, Any]]:
        # identity precedence: live order row, then the token's carried identity
        phone = (order.customer_phone or "").strip() or (payload.customer_phone or "").strip()
        wrong_text = str(before.get("name") or before.get("canonical") or "").strip()
        if not phone or not wrong_text or not selected.product_id:
            logger.info(
                f"clarification_manager ::::: _learning_job ::::: skipped order={order.id} "
                f"phone={bool(phone)} text={bool(wrong_text)} product={bool(selected.product_id)}"
            )
            return None
        return {
            "org_id": order.org_id,
            "customer_phone": phone,
            "wrong_text": wrong_text,
            "product_id": selected.product_id,
            "confidence": 1.0,
            "promote_threshold": self.settings.ALIAS_PROMOTE_THRESHOLD,
        }
