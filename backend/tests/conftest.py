"""
Shared test fixtures for the batch job suite.

Provides: file-backed SQLite store, local file storage, seeded catalog,
in-memory queue and an orchestrator wired the way the application wires it.
"""

import os
import tempfile

# Settings are cached on first import; configure the environment before any app import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:6399/0")
os.environ.setdefault("QUEUE_BACKEND", "memory")
os.environ.setdefault("ADMIN_API_TOKEN", "test_token")
os.environ.setdefault("WORKER_MEMORY_LIMIT", "64G")
os.environ.setdefault("EXPORTS_DIR", tempfile.mkdtemp(prefix="batch_jobs_exports_"))

import csv
import io
from decimal import Decimal

import pytest

from app.core.config import get_settings
from app.db.models.product import Product, ProductVariant
from app.db.session import build_engine, build_session_factory, init_db
from app.exports.source import SqlProductSource
from app.processors.product_export import ProductExportProcessor
from app.processors.registry import ProcessorRegistry
from app.services.job_store import JobStore
from app.services.orchestrator import BatchJobOrchestrator
from app.storage.file_storage import LocalFileStorage
from app.workers.local_worker import LocalWorkerPool
from app.workers.queue import InMemoryJobQueue

EXPORT_TITLE = "Test export product"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'batch_jobs.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(tmp_path / "exports")


@pytest.fixture
def queue():
    return InMemoryJobQueue(visibility_timeout=60)


class RecordingPublisher:
    """Stands in for the Redis progress publisher."""

    def __init__(self):
        self.calls = []

    def __call__(self, job_id, advanced_count, total_count=None, *, status=None, message=None):
        self.calls.append(
            {
                "job_id": job_id,
                "advanced_count": advanced_count,
                "total_count": total_count,
                "status": status,
            }
        )


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def product_source(session_factory):
    return SqlProductSource(session_factory)


@pytest.fixture
def registry(product_source, storage):
    registry = ProcessorRegistry()
    registry.register(
        "product-export",
        ProductExportProcessor(product_source, storage, page_size=2),
    )
    return registry


@pytest.fixture
def make_orchestrator(store, queue, publisher):
    def factory(registry, **overrides):
        options = {
            "max_attempts": 3,
            "backoff_seconds": 0.0,
            "backoff_max_seconds": 0.0,
            "progress_flush_every": 1,
            "progress_flush_interval": 0.0,
            "progress_publisher": publisher,
        }
        options.update(overrides)
        return BatchJobOrchestrator(store, queue, registry, **options)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator, registry):
    return make_orchestrator(registry)


@pytest.fixture
def worker(orchestrator, queue):
    return LocalWorkerPool(orchestrator, queue)


def add_product(session, title, *, variants=(), **fields):
    product = Product(title=title, **fields)
    for rank, variant_fields in enumerate(variants):
        product.variants.append(ProductVariant(variant_rank=rank, **variant_fields))
    session.add(product)
    session.flush()
    return product


@pytest.fixture
def catalog(session_factory):
    """Seed one product matching EXPORT_TITLE plus unrelated products.

    Returns a dict of the ids the tests assert against.
    """
    with session_factory() as session:
        target = add_product(
            session,
            EXPORT_TITLE,
            handle="test-export-product",
            description="test-product-description",
            status="published",
            type="test-type",
            collection_title="Test collection",
            collection_handle="test-collection",
            tags=["123", "456"],
            options=["size", "color"],
            images=["test-image.png", "test-image-2.png"],
            weight=Decimal("100"),
            variants=[
                {
                    "title": "Test variant",
                    "sku": "test-variant-sku-product-export",
                    "inventory_quantity": 10,
                    "prices": [
                        {"currency_code": "usd", "amount": 100},
                        {"currency_code": "eur", "amount": 45},
                        {"currency_code": "dkk", "amount": 30},
                    ],
                    "options": ["large", "green"],
                }
            ],
        )
        others = [
            add_product(
                session,
                f"Other product {index}",
                handle=f"other-{index}",
                status="draft",
                tags=["other"],
                variants=[
                    {"title": f"Other variant {index}-a", "sku": f"other-{index}-a"},
                    {"title": f"Other variant {index}-b", "sku": f"other-{index}-b"},
                ],
            )
            for index in range(4)
        ]
        bare = add_product(session, "Product without variants", handle="bare")
        deleted = add_product(session, EXPORT_TITLE, handle="deleted", is_deleted=True)
        session.commit()
        return {
            "product_id": target.id,
            "variant_id": target.variants[0].id,
            "other_ids": [p.id for p in others],
            "bare_id": bare.id,
            "deleted_id": deleted.id,
        }


def read_export(storage, file_key):
    """Return (header, data_rows) of a stored export."""
    with storage.resolve(file_key) as handle:
        text = handle.read().decode("utf-8")
    rows = list(csv.reader(io.StringIO(text, newline=""), delimiter=";"))
    return rows[0], rows[1:]


@pytest.fixture
def settings():
    return get_settings()
