"""Database models package."""
from app.db.models.batch_job import BatchJob
from app.db.models.product import Product, ProductVariant

__all__ = ["BatchJob", "Product", "ProductVariant"]
