# database/models.py
from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Boolean, Column, String, Text, Integer, Float, JSON, DateTime, Index, UniqueConstraint, CheckConstraint)

from app.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------------------------------------------------------
# orders  (line items live in a JSON array, mutated in place)
# -------------------------------------------------------------------------

class Order(Base):
    __tablename__ = "orders"

    id             = Column(String, primary_key=True, default=_uuid_str)
    org_id         = Column(String, nullable=False, index=True)

    # [{name, canonical, brand, variant, qty, unit, product_id}, ...]
    items          = Column(JSON, nullable=False, default=list)

    customer_phone = Column(String, nullable=True)
    customer_name  = Column(String, nullable=True)
    source_msg_id  = Column(String, nullable=True)
    raw_text       = Column(Text, nullable=True)

    # e.g. "ai", "alias_resolved", "clarified_choice", "clarified_other"
    parse_reason   = Column(String, nullable=True)

    created_at     = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at     = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


# -------------------------------------------------------------------------
# products  (catalog; read-only from this service)
# -------------------------------------------------------------------------

class Product(Base):
    __tablename__ = "products"

    id           = Column(String, primary_key=True, default=_uuid_str)
    org_id       = Column(String, nullable=False)
    canonical    = Column(String, nullable=False)      # e.g. "noodles"
    display_name = Column(String, nullable=True)       # e.g. "Maggi Masala Noodles 70g"
    brand        = Column(String, nullable=True)
    variant      = Column(String, nullable=True)
    unit         = Column(String, nullable=True)
    is_active    = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_products_org_canonical", "org_id", "canonical"),
    )


# -------------------------------------------------------------------------
# customer_aliases  (per-customer memory: what this customer means by a phrase)
# -------------------------------------------------------------------------

class CustomerAlias(Base):
    __tablename__ = "customer_aliases"

    id                   = Column(Integer, primary_key=True, autoincrement=True)
    org_id               = Column(String, nullable=False)
    customer_phone       = Column(String, nullable=False)
    wrong_text           = Column(String, nullable=False)   # normalized key
    canonical_product_id = Column(String, nullable=False)
    occurrence_count     = Column(Integer, nullable=False, default=1)

    created_at           = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at           = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "customer_phone", "wrong_text", name="uq_customer_alias_key"),
        CheckConstraint("occurrence_count >= 1", name="ck_customer_alias_count"),
    )


# -------------------------------------------------------------------------
# product_aliases  (org-wide memory, fed by promotion from customer_aliases)
# -------------------------------------------------------------------------

class ProductAlias(Base):
    __tablename__ = "product_aliases"

    id                   = Column(Integer, primary_key=True, autoincrement=True)
    org_id               = Column(String, nullable=False)
    wrong_text           = Column(String, nullable=False)   # normalized key
    canonical_product_id = Column(String, nullable=False)
    occurrence_count     = Column(Integer, nullable=False, default=1)
    confidence           = Column(Float, nullable=True)      # 0..1

    created_at           = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at           = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "wrong_text", name="uq_product_alias_key"),
        CheckConstraint("occurrence_count >= 1", name="ck_product_alias_count"),
    )


# -------------------------------------------------------------------------
# clarifications  (append-only log of answered links)
# -------------------------------------------------------------------------

class Clarification(Base):
    __tablename__ = "clarifications"

    id          = Column(Integer, primary_key=True, autoincrement=True)
    org_id      = Column(String, nullable=False)
    order_id    = Column(String, nullable=False)
    line_index  = Column(Integer, nullable=False)
    choice      = Column(Integer, nullable=False)
    selection   = Column(JSON, nullable=False)
    options     = Column(JSON, nullable=False)
    token_hash  = Column(String(64), nullable=False)        # sha256 hex, never the token
    duplicate   = Column(Boolean, nullable=False, default=False)
    user_agent  = Column(Text, nullable=True)
    ip          = Column(String, nullable=True)
    created_at  = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("idx_clarifications_order", "order_id", "line_index"),
        Index("idx_clarifications_token_hash", "token_hash"),
    )


__all__ = [
    "Base",
    "Order",
    "Product",
    "CustomerAlias",
    "ProductAlias",
    "Clarification",
]
