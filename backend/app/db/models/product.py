"""SQLAlchemy models for the catalog read model (products and variants)."""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import DateTime

from app.db.base import Base, JSONType


def _prefixed_id(prefix: str):
    return lambda: f"{prefix}_{uuid.uuid4().hex}"


class Product(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, default=_prefixed_id("prod"))
    handle = Column(String(255), index=True)
    title = Column(String(255), nullable=False)
    subtitle = Column(String(255))
    description = Column(Text)
    status = Column(String(32), nullable=False, default="draft")
    thumbnail = Column(Text)
    weight = Column(Numeric)
    length = Column(Numeric)
    width = Column(Numeric)
    height = Column(Numeric)
    hs_code = Column(String(64))
    origin_country = Column(String(64))
    mid_code = Column(String(64))
    material = Column(String(255))
    collection_title = Column(String(255))
    collection_handle = Column(String(255))
    type = Column(String(255))
    tags = Column(JSONType, nullable=False, default=list)
    discountable = Column(Boolean, nullable=False, default=True)
    external_id = Column(String(255))
    profile_name = Column(String(255))
    profile_type = Column(String(64))
    options = Column(JSONType, nullable=False, default=list)
    images = Column(JSONType, nullable=False, default=list)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        order_by="(ProductVariant.variant_rank, ProductVariant.id)",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_products_title", "title"),)


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String(64), primary_key=True, default=_prefixed_id("variant"))
    product_id = Column(
        String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    title = Column(String(255), nullable=False)
    sku = Column(String(64), index=True)
    barcode = Column(String(64))
    inventory_quantity = Column(Integer, nullable=False, default=0)
    allow_backorder = Column(Boolean, nullable=False, default=False)
    manage_inventory = Column(Boolean, nullable=False, default=True)
    weight = Column(Numeric)
    length = Column(Numeric)
    width = Column(Numeric)
    height = Column(Numeric)
    hs_code = Column(String(64))
    origin_country = Column(String(64))
    mid_code = Column(String(64))
    material = Column(String(255))
    # [{"currency_code": "usd", "amount": 100}, ...]
    prices = Column(JSONType, nullable=False, default=list)
    # Option values, positionally aligned with Product.options
    options = Column(JSONType, nullable=False, default=list)
    variant_rank = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (Index("ix_product_variants_product_id", "product_id"),)
