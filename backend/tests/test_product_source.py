import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.core.errors import PermanentProcessingError, TransientProcessingError
from app.exports.source import ProductFilter, SqlProductSource
from conftest import EXPORT_TITLE, add_product


class BrokenSession:
    """Session whose queries fail the way the driver reports them."""

    def __init__(self, error):
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def scalars(self, query):
        raise self.error

    scalar = scalars


def _drain(source, filters, page_size):
    records, cursor, pages = [], None, 0
    while True:
        page, cursor = source.fetch_page(filters, cursor, page_size)
        records.extend(page)
        pages += 1
        if cursor is None:
            return records, pages


def test_title_filter_matches_exactly(product_source, catalog):
    records, _ = _drain(product_source, ProductFilter(title=EXPORT_TITLE), 10)

    assert [r["id"] for r in records] == [catalog["product_id"]]
    assert records[0]["variants"][0]["id"] == catalog["variant_id"]
    assert records[0]["variants"][0]["prices"][0] == {"currency_code": "usd", "amount": 100}


def test_pagination_is_stable_and_complete(product_source, catalog):
    records, pages = _drain(product_source, ProductFilter(), 2)

    ids = [r["id"] for r in records]
    expected = sorted([catalog["product_id"], catalog["bare_id"], *catalog["other_ids"]])
    assert ids == expected
    assert len(set(ids)) == len(ids)
    assert pages >= 3


def test_soft_deleted_products_are_excluded(product_source, catalog):
    records, _ = _drain(product_source, ProductFilter(), 50)

    assert catalog["deleted_id"] not in {r["id"] for r in records}


def test_tag_filter_matches_any(product_source, catalog):
    records, _ = _drain(product_source, ProductFilter(tags=["456", "nope"]), 1)

    assert [r["id"] for r in records] == [catalog["product_id"]]


def test_search_and_status_filters(product_source, catalog):
    records, _ = _drain(product_source, ProductFilter(q="OTHER", status="draft"), 10)

    assert sorted(r["id"] for r in records) == sorted(catalog["other_ids"])


def test_id_filter_accepts_single_value(product_source, catalog):
    records, _ = _drain(product_source, ProductFilter(id=catalog["bare_id"]), 10)

    assert [r["id"] for r in records] == [catalog["bare_id"]]
    assert records[0]["variants"] == []


def test_count(product_source, catalog):
    assert product_source.count(ProductFilter()) == 6
    assert product_source.count(ProductFilter(title=EXPORT_TITLE)) == 1
    assert product_source.count(ProductFilter(tags=["other"])) is None


def test_search_treats_wildcards_literally(product_source, session_factory):
    with session_factory() as session:
        discounted = add_product(session, "Hoodie 50% off", handle="hoodie-sale")
        add_product(session, "Hoodie 500 pack", handle="hoodie-bulk")
        underscored = add_product(session, "Cap", handle="cap_red")
        add_product(session, "Cap", handle="capxred")
        session.commit()
        discounted_id, underscored_id = discounted.id, underscored.id

    percent, _ = _drain(product_source, ProductFilter(q="50%"), 10)
    underscore, _ = _drain(product_source, ProductFilter(q="cap_"), 10)

    assert [r["id"] for r in percent] == [discounted_id]
    assert [r["id"] for r in underscore] == [underscored_id]


def test_schema_mismatch_is_permanent():
    error = ProgrammingError(
        "SELECT products.mid_code", {}, Exception("column products.mid_code does not exist")
    )
    source = SqlProductSource(lambda: BrokenSession(error))

    with pytest.raises(PermanentProcessingError, match="mid_code"):
        source.fetch_page(ProductFilter(), None, 10)


def test_lost_connection_is_transient():
    error = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
    source = SqlProductSource(lambda: BrokenSession(error))

    with pytest.raises(TransientProcessingError):
        source.fetch_page(ProductFilter(), None, 10)
