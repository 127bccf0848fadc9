# app/routers/clarify.py
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.db import get_db, get_session
from app.logging_config import logger
from managers.alias_engine import run_alias_confirmation
from managers.clarification_manager import ClarificationManager, open_clarify_link
from managers.errors import ClarificationError
from utils.clarify_pages import HTML_CSP, plain_notice, render_clarify_page, render_thanks_page
from utils.clarify_token import ClarifyOption
from whatsapp.builder_out import send_clarify_link

router = APIRouter(tags=["clarify"])


class ClarifyLinkRequest(BaseModel):
    order_id: str
    line_index: int
    ttl_seconds: Optional[int] = None
    options: Optional[List[ClarifyOption]] = None
    deliver: bool = False


async def _read_submission(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return dict(form)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


# -------------- HTML page --------------
@router.get("/c/{token}", response_class=HTMLResponse)
async def clarify_page(token: str, settings: Settings = Depends(get_settings)):
    try:
        payload, options = open_clarify_link(token, settings)
    except ClarificationError as e:
        return HTMLResponse(plain_notice(e.message, title="Link expired"), status_code=e.status_code)
    return HTMLResponse(render_clarify_page(token, payload, options), headers={"Content-Security-Policy": HTML_CSP})


# -------------- POST /api/clarify --------------
@router.post("/api/clarify", response_class=HTMLResponse)
async def submit_clarification(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    sessionmaker: async_sessionmaker = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    body = await _read_submission(request)
    manager = ClarificationManager(db, settings)
    try:
        outcome = await manager.submit(
            str(body.get("token") or ""),
            body.get("choice"),
            other_brand=body.get("other_brand"),
            other_variant=body.get("other_variant"),
            user_agent=request.headers.get("user-agent", ""),
            ip=_client_ip(request),
        )
    except ClarificationError as e:
        logger.info(f"clarify ::::: submit_clarification ::::: rejected ({e.code}): {e.message}")
        return HTMLResponse(plain_notice(e.message), status_code=e.status_code)
    except Exception as e:
        logger.error(f"clarify ::::: submit_clarification ::::: unexpected error: {e}")
        return HTMLResponse(plain_notice("Something went wrong. Please try again later."), status_code=500)

    if outcome.learning:
        background_tasks.add_task(run_alias_confirmation, sessionmaker, **outcome.learning)
    return HTMLResponse(render_thanks_page())


# -------------- POST /api/clarify-link --------------
@router.post("/api/clarify-link")
async def create_clarify_link(
    payload: ClarifyLinkRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    manager = ClarificationManager(db, settings)
    try:
        link = await manager.issue_link(
            payload.order_id,
            payload.line_index,
            options=payload.options,
            ttl_seconds=payload.ttl_seconds,
        )
    except ClarificationError as e:
        return JSONResponse({"ok": False, "error": e.code}, status_code=e.status_code)
    except Exception as e:
        logger.error(f"clarify ::::: create_clarify_link ::::: unexpected error: {e}")
        return JSONResponse({"ok": False, "error": "server_error"}, status_code=500)

    if payload.deliver and link.customer_phone:
        background_tasks.add_task(send_clarify_link, link.customer_phone, link.url, link.options[0].canonical)
    return {"ok": True, "url": link.url, "expires_at": link.expires_at}
