"""Stream paged records through a serializer into a delimited file."""

from __future__ import annotations

import csv
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from app.core.errors import TransientProcessingError
from app.exports.source import ProductDataSource, ProductFilter
from app.storage.file_storage import LocalFileStorage
from app.utils.memory_monitor import check_memory_exceeded, force_gc, log_memory_status

logger = logging.getLogger(__name__)

DELIMITER = ";"
LINE_TERMINATOR = "\r\n"
# Pages between forced garbage collections
GC_EVERY_PAGES = 10


class RowSerializer(Protocol):
    schema_version: str

    @property
    def header(self) -> list[str]: ...

    def rows(self, record: Mapping[str, Any]) -> Iterator[list[str]]: ...


class ExportReporter(Protocol):
    def set_total(self, total_count: int | None) -> None: ...

    def advance(self, count: int) -> None: ...

    def check_canceled(self) -> None: ...


@dataclass(frozen=True)
class ExportResult:
    file_key: str
    file_size: int
    row_count: int
    record_count: int
    schema_version: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "file_key": self.file_key,
            "file_size": self.file_size,
            "row_count": self.row_count,
            "record_count": self.record_count,
            "schema_version": self.schema_version,
        }


class ExportWriter:
    """Write header + serialized rows page by page.

    Only one page of records is alive at a time. The sink is committed when the
    last page has been written; any exception (including a cancellation raised
    at the per-page checkpoint) discards it.
    """

    def __init__(
        self,
        source: ProductDataSource,
        serializer: RowSerializer,
        storage: LocalFileStorage,
        *,
        page_size: int,
        memory_check: Callable[[], tuple[bool, int, int]] = check_memory_exceeded,
    ):
        self.source = source
        self.serializer = serializer
        self.storage = storage
        self.page_size = page_size
        self._memory_check = memory_check

    def write(
        self, file_key: str, filters: ProductFilter, reporter: ExportReporter
    ) -> ExportResult:
        log_memory_status(f"Export {file_key} start")
        reporter.set_total(self.source.count(filters))

        row_count = 0
        record_count = 0
        pages = 0
        with self.storage.open_for_write(file_key) as handle:
            writer = csv.writer(
                handle,
                delimiter=DELIMITER,
                lineterminator=LINE_TERMINATOR,
                quoting=csv.QUOTE_MINIMAL,
            )
            writer.writerow(self.serializer.header)

            cursor: str | None = None
            while True:
                reporter.check_canceled()
                records, cursor = self.source.fetch_page(filters, cursor, self.page_size)
                for record in records:
                    for row in self.serializer.rows(record):
                        writer.writerow(row)
                        row_count += 1
                record_count += len(records)
                pages += 1
                reporter.advance(len(records))

                is_exceeded, current, limit = self._memory_check()
                if is_exceeded:
                    raise TransientProcessingError(
                        f"Memory limit exceeded during export: {current} >= {limit} bytes"
                    )
                if pages % GC_EVERY_PAGES == 0:
                    force_gc()

                if cursor is None:
                    break

        log_memory_status(f"Export {file_key} complete")
        logger.info(
            f"Exported {record_count} records ({row_count} rows) to {file_key} "
            f"in {pages} pages"
        )
        return ExportResult(
            file_key=file_key,
            file_size=self.storage.size(file_key),
            row_count=row_count,
            record_count=record_count,
            schema_version=self.serializer.schema_version,
        )
