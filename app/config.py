# app/config.py
from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import List, Optional

import boto3
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from urllib.parse import quote_plus


class Settings(BaseSettings):
    # ---- Pydantic v2 settings ----
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",          # accept extra env vars without error
    )

    # ---- App basics ----
    APP_NAME: str = "Order Clarify API"
    STAGE: str = "prod"

    # ---- Database ----
    DATABASE_URL: Optional[str] = None
    SECRET_NAME: Optional[str] = None           # if set, fetch creds from AWS SM
    AWS_REGION: str = os.getenv("AWS_REGION", "ap-south-1")

    # ---- Clarification links ----
    CLARIFY_SECRET: str = ""
    PUBLIC_BASE_URL: str = "http://localhost:8787"
    CLARIFY_TTL_SECONDS: int = 2 * 24 * 3600
    CLARIFY_MAX_OPTIONS: int = 5

    # ---- Alias memory ----
    ALIAS_PROMOTE_THRESHOLD: int = 3

    # ---- Inbound dedup ----
    DEDUP_CAPACITY: int = 5000

    # ---- WhatsApp delivery ----
    WHATSAPP_ACCESS_TOKEN: Optional[str] = None
    PHONE_NUMBER_ID: Optional[str] = None

    # ---- CORS ----
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        """
        Accept either JSON (e.g. '["https://a","https://b"]')
        or comma-separated string (e.g. 'https://a, https://b')
        """
        if not v:
            return []
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except ValueError:
                    pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("CLARIFY_MAX_OPTIONS", "ALIAS_PROMOTE_THRESHOLD", "DEDUP_CAPACITY")
    @classmethod
    def _floor_one(cls, v: int) -> int:
        return max(1, int(v))

    @field_validator("PUBLIC_BASE_URL")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return (v or "").rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_db_url(settings: Settings) -> str:
    """Return an async SQLAlchemy URL. If SECRET_NAME is set, read from AWS SM."""
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    if not settings.SECRET_NAME:
        raise RuntimeError("No DATABASE_URL or SECRET_NAME provided.")

    sm = boto3.client("secretsmanager", region_name=settings.AWS_REGION)
    secret = sm.get_secret_value(SecretId=settings.SECRET_NAME)["SecretString"]
    s = json.loads(secret)  # expected keys: host, port, username, password, dbname

    user = s["username"]
    pwd = quote_plus(s["password"])  # encode @ : / etc.
    host = s["host"]
    port = s.get("port", 5432)
    db = s["dbname"]

    return f"postgresql+asyncpg://{user}:{pwd}@{host}:{port}/{db}"
