# app/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.db import dispose_engine, get_engine, init_models
from app.logging_config import logger

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    try:
        async with engine.connect() as conn:
            await conn.exec_driver_sql("select 1")
    except Exception:
        logger.exception(
            "main ::::: lifespan ::::: DB startup ping failed (url_scheme=%s)",
            str(engine.url).split("://", 1)[0],
        )
        raise
    await init_models()
    if not settings.CLARIFY_SECRET:
        logger.warning("main ::::: lifespan ::::: CLARIFY_SECRET is empty; clarification links cannot be minted")
    logger.info(f"main ::::: lifespan ::::: {settings.APP_NAME} up (stage={settings.STAGE})")
    yield
    await dispose_engine()

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

from app.routers import clarify, ingest

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(clarify.router)
app.include_router(ingest.router)

@app.get("/")
def read_root():
    return {"status": "backend is live"}

@app.get("/health")
def health():
    return {"ok": True, "stage": settings.STAGE}
