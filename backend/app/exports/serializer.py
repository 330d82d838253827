"""Flatten product records into fixed-position export rows."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from decimal import Decimal
from typing import Any

SCHEMA_VERSION = "v1"

Record = Mapping[str, Any]


def format_value(value: Any) -> str:
    """Render a single cell; quoting is left to the csv writer."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        normalized = value.normalize()
        # Decimal("100").normalize() gives 1E+2
        return format(normalized, "f")
    if isinstance(value, (list, tuple)):
        return ",".join(format_value(item) for item in value)
    return str(value)


def _field(name: str) -> Callable[[Record], Any]:
    return lambda record: record.get(name)


def _prices(variant: Record) -> list[str]:
    return [
        f"{price.get('currency_code', '')}:{format_value(price.get('amount'))}"
        for price in variant.get("prices") or []
    ]


def _variant_options(product: Record, variant: Record) -> list[str]:
    names = product.get("options") or []
    values = variant.get("options") or []
    pairs = []
    for index, value in enumerate(values):
        name = names[index] if index < len(names) else f"option_{index + 1}"
        pairs.append(f"{name}:{format_value(value)}")
    return pairs


# (header, getter) pairs; order is the positional contract of schema v1.
PRODUCT_COLUMNS: list[tuple[str, Callable[[Record], Any]]] = [
    ("Product Id", _field("id")),
    ("Product Handle", _field("handle")),
    ("Product Title", _field("title")),
    ("Product Subtitle", _field("subtitle")),
    ("Product Description", _field("description")),
    ("Product Status", _field("status")),
    ("Product Thumbnail", _field("thumbnail")),
    ("Product Weight", _field("weight")),
    ("Product Length", _field("length")),
    ("Product Width", _field("width")),
    ("Product Height", _field("height")),
    ("Product HS Code", _field("hs_code")),
    ("Product Origin Country", _field("origin_country")),
    ("Product MID Code", _field("mid_code")),
    ("Product Material", _field("material")),
    ("Product Collection Title", _field("collection_title")),
    ("Product Collection Handle", _field("collection_handle")),
    ("Product Type", _field("type")),
    ("Product Tags", _field("tags")),
    ("Product Discountable", _field("discountable")),
    ("Product External Id", _field("external_id")),
    ("Product Profile Name", _field("profile_name")),
    ("Product Profile Type", _field("profile_type")),
]

VARIANT_COLUMNS: list[tuple[str, Callable[[Record], Any]]] = [
    ("Variant Id", _field("id")),
    ("Variant Title", _field("title")),
    ("Variant SKU", _field("sku")),
    ("Variant Barcode", _field("barcode")),
    ("Variant Inventory Quantity", _field("inventory_quantity")),
    ("Variant Allow Backorder", _field("allow_backorder")),
    ("Variant Manage Inventory", _field("manage_inventory")),
    ("Variant Weight", _field("weight")),
    ("Variant Length", _field("length")),
    ("Variant Width", _field("width")),
    ("Variant Height", _field("height")),
    ("Variant HS Code", _field("hs_code")),
    ("Variant Origin Country", _field("origin_country")),
    ("Variant MID Code", _field("mid_code")),
    ("Variant Material", _field("material")),
    ("Variant Prices", _prices),
]

TRAILING_COLUMNS = ["Variant Options", "Product Options", "Product Images"]


class ProductExportSerializer:
    """Serializer for the ``product-export`` job type.

    A product yields one row per variant with the product columns repeated; a
    product without variants yields a single row with empty variant columns.
    """

    schema_version = SCHEMA_VERSION

    @property
    def header(self) -> list[str]:
        return (
            [name for name, _ in PRODUCT_COLUMNS]
            + [name for name, _ in VARIANT_COLUMNS]
            + TRAILING_COLUMNS
        )

    def rows(self, product: Record) -> Iterator[list[str]]:
        product_cells = [format_value(get(product)) for _, get in PRODUCT_COLUMNS]
        product_options = format_value(product.get("options") or [])
        images = format_value(product.get("images") or [])

        variants: Sequence[Record] = product.get("variants") or []
        if not variants:
            yield product_cells + [""] * (len(VARIANT_COLUMNS) + 1) + [
                product_options,
                images,
            ]
            return

        for variant in variants:
            variant_cells = [format_value(get(variant)) for _, get in VARIANT_COLUMNS]
            yield product_cells + variant_cells + [
                format_value(_variant_options(product, variant)),
                product_options,
                images,
            ]
