"""Paginated, filterable read access to the product catalog."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.core.errors import PermanentProcessingError, TransientProcessingError
from app.db.models.product import Product, ProductVariant

logger = logging.getLogger(__name__)

Page = tuple[list[dict[str, Any]], str | None]


class ProductFilter(BaseModel):
    """Filterable fields accepted by product exports (combined with AND)."""

    model_config = ConfigDict(extra="forbid")

    id: list[str] | None = None
    title: str | None = None
    handle: str | None = None
    status: list[str] | None = None
    type: str | None = None
    collection_handle: str | None = None
    tags: list[str] | None = Field(None, description="Match products with any of these tags")
    q: str | None = Field(None, description="Case-insensitive search over title, handle, description")

    @field_validator("id", "status", mode="before")
    @classmethod
    def _one_or_many(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v


class ProductDataSource(Protocol):
    def fetch_page(
        self, filters: ProductFilter, cursor: str | None, page_size: int
    ) -> Page:
        """Return up to ``page_size`` records after ``cursor`` and the next cursor."""
        ...

    def count(self, filters: ProductFilter) -> int | None:
        ...


def variant_to_record(variant: ProductVariant) -> dict[str, Any]:
    return {
        "id": variant.id,
        "title": variant.title,
        "sku": variant.sku,
        "barcode": variant.barcode,
        "inventory_quantity": variant.inventory_quantity,
        "allow_backorder": variant.allow_backorder,
        "manage_inventory": variant.manage_inventory,
        "weight": variant.weight,
        "length": variant.length,
        "width": variant.width,
        "height": variant.height,
        "hs_code": variant.hs_code,
        "origin_country": variant.origin_country,
        "mid_code": variant.mid_code,
        "material": variant.material,
        "prices": list(variant.prices or []),
        "options": list(variant.options or []),
    }


def product_to_record(product: Product) -> dict[str, Any]:
    return {
        "id": product.id,
        "handle": product.handle,
        "title": product.title,
        "subtitle": product.subtitle,
        "description": product.description,
        "status": product.status,
        "thumbnail": product.thumbnail,
        "weight": product.weight,
        "length": product.length,
        "width": product.width,
        "height": product.height,
        "hs_code": product.hs_code,
        "origin_country": product.origin_country,
        "mid_code": product.mid_code,
        "material": product.material,
        "collection_title": product.collection_title,
        "collection_handle": product.collection_handle,
        "type": product.type,
        "tags": list(product.tags or []),
        "discountable": product.discountable,
        "external_id": product.external_id,
        "profile_name": product.profile_name,
        "profile_type": product.profile_type,
        "options": list(product.options or []),
        "images": list(product.images or []),
        "variants": [variant_to_record(v) for v in product.variants],
    }


class SqlProductSource:
    """Keyset-paginated product reader (ordered by product id).

    Each page opens its own short-lived session, so a long export never pins a
    connection or accumulates ORM state across pages.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _apply_filters(self, query: Select, filters: ProductFilter) -> Select:
        query = query.where(~Product.is_deleted)
        if filters.id:
            query = query.where(Product.id.in_(filters.id))
        if filters.title is not None:
            query = query.where(Product.title == filters.title)
        if filters.handle is not None:
            query = query.where(Product.handle == filters.handle)
        if filters.status:
            query = query.where(Product.status.in_(filters.status))
        if filters.type is not None:
            query = query.where(Product.type == filters.type)
        if filters.collection_handle is not None:
            query = query.where(Product.collection_handle == filters.collection_handle)
        if filters.q:
            escaped = (
                filters.q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            )
            pattern = f"%{escaped}%"
            query = query.where(
                or_(
                    Product.title.ilike(pattern, escape="\\"),
                    Product.handle.ilike(pattern, escape="\\"),
                    Product.description.ilike(pattern, escape="\\"),
                )
            )
        return query

    def _tags_match(self, record: dict[str, Any], filters: ProductFilter) -> bool:
        if not filters.tags:
            return True
        return bool(set(record["tags"]) & set(filters.tags))

    def fetch_page(
        self, filters: ProductFilter, cursor: str | None, page_size: int
    ) -> Page:
        query = self._apply_filters(
            select(Product).options(selectinload(Product.variants)), filters
        )
        if cursor is not None:
            query = query.where(Product.id > cursor)
        query = query.order_by(Product.id).limit(page_size)
        try:
            with self._session_factory() as session:
                products = session.scalars(query).all()
                records = [product_to_record(p) for p in products]
        except (OperationalError, DisconnectionError) as e:
            logger.error(f"Database error fetching product page: {e}", exc_info=True)
            raise TransientProcessingError(f"Product page fetch failed: {e}") from e
        except SQLAlchemyError as e:
            # Missing columns, bad casts: the catalog does not match the export schema.
            logger.error(f"Product page query rejected: {e}", exc_info=True)
            raise PermanentProcessingError(f"Product page query failed: {e}") from e

        next_cursor = records[-1]["id"] if len(records) == page_size else None
        # Tag membership lives in a JSON column; match it after the keyset
        # window so cursors still advance over non-matching rows.
        return [r for r in records if self._tags_match(r, filters)], next_cursor

    def count(self, filters: ProductFilter) -> int | None:
        if filters.tags:
            # Not expressible portably on a JSON column; progress runs without a total.
            return None
        query = self._apply_filters(select(func.count(Product.id)), filters)
        try:
            with self._session_factory() as session:
                return session.scalar(query) or 0
        except SQLAlchemyError as e:
            logger.warning(f"Could not count products for export: {e}")
            return None
