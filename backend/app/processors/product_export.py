"""The ``product-export`` job type."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError
from app.exports.serializer import ProductExportSerializer
from app.exports.source import ProductDataSource, ProductFilter
from app.exports.writer import ExportWriter
from app.services.progress_tracker import ProgressReporter
from app.storage.file_storage import LocalFileStorage

logger = logging.getLogger(__name__)

JOB_TYPE = "product-export"
EXPORT_PREFIX = "exports/products"


class ProductExportContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    filterable_fields: ProductFilter = Field(default_factory=ProductFilter)
    batch_size: int | None = Field(
        None, ge=1, le=10000, description="Records fetched per page"
    )


def export_file_key(job_id: str, attempt: int) -> str:
    return f"{EXPORT_PREFIX}/product-export-{job_id}-{attempt}.csv"


class ProductExportProcessor:
    """Exports the filtered catalog as a ``;``-delimited file."""

    def __init__(
        self,
        source: ProductDataSource,
        storage: LocalFileStorage,
        *,
        page_size: int,
        serializer: ProductExportSerializer | None = None,
    ):
        self.source = source
        self.storage = storage
        self.page_size = page_size
        self.serializer = serializer or ProductExportSerializer()

    def validate_context(self, context: dict[str, Any]) -> ProductExportContext:
        try:
            return ProductExportContext.model_validate(context)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid context for {JOB_TYPE}",
                errors=e.errors(include_url=False, include_context=False),
            ) from e

    def run(
        self, context: ProductExportContext, reporter: ProgressReporter
    ) -> dict[str, Any]:
        writer = ExportWriter(
            self.source,
            self.serializer,
            self.storage,
            page_size=context.batch_size or self.page_size,
        )
        file_key = export_file_key(reporter.job_id, reporter.attempt)
        result = writer.write(file_key, context.filterable_fields, reporter)
        return result.as_dict()

    def discard(self, result: dict[str, Any]) -> None:
        file_key = result.get("file_key")
        if file_key:
            logger.info(f"Discarding superseded export {file_key}")
            self.storage.delete(file_key)
