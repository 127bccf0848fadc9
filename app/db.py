# app/db.py
import os, ssl, certifi
from typing import Optional, AsyncGenerator
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, async_sessionmaker, AsyncSession
from app.config import get_settings, get_db_url

class Base(DeclarativeBase):
    pass

_engine: Optional[AsyncEngine] = None
_SessionLocal: Optional[async_sessionmaker] = None

def normalize_url(url: str) -> str:
    """Point plain postgres/sqlite URLs at their async drivers."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url

def _ssl_args_for_postgres() -> dict:
    mode = os.getenv("DB_SSLMODE", "verify-full").lower()
    if mode == "disable":
        return {}

    ctx = ssl.create_default_context()

    # explicit PEM string, then PEM path, then the certifi bundle
    ca_pem = os.getenv("DB_CA_PEM")
    ca_path = os.getenv("DB_SSLROOTCERT")
    if ca_pem:
        ctx.load_verify_locations(cadata=ca_pem)
    elif ca_path:
        ctx.load_verify_locations(cafile=ca_path)
    else:
        ctx.load_verify_locations(cafile=certifi.where())

    if mode == "require":
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    elif mode == "verify-ca":
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_REQUIRED
    else:
        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED
    return {"ssl": ctx}

def _engine_kwargs(url: str) -> dict:
    if url.startswith("postgresql+asyncpg://"):
        connect_args = _ssl_args_for_postgres()
        # fail fast when the network is wrong
        connect_args.setdefault("timeout", float(os.getenv("DB_CONNECT_TIMEOUT", "10")))
        # alias upserts are short; a modest pool is plenty
        return {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True, "connect_args": connect_args}
    return {}

def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = normalize_url(get_db_url(get_settings()))
        _engine = create_async_engine(url, echo=False, **_engine_kwargs(url))
    return _engine

def get_sessionmaker() -> async_sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = async_sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionLocal

def get_session() -> async_sessionmaker:
    """Factory for jobs that outlive the request (learning, delivery)."""
    return get_sessionmaker()

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_sessionmaker()() as session:
        yield session

async def init_models() -> None:
    # dev-only: production schemas are migrated out of band
    import database.models  # noqa: F401  registers tables on Base
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def dispose_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionLocal = None
