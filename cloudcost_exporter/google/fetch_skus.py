"""Export the SKUs of a billing service to CSV."""

from __future__ import annotations

import csv
from collections.abc import Iterable
from decimal import Decimal
from os import PathLike
from typing import TextIO

from cloudcost_exporter.google.billing import CloudCatalogClient, Sku, get_pricing, get_service_name

HEADER = ["sku_id", "description", "category", "region", "pricing_info"]


def _format_price(value: float) -> str:
    """Shortest decimal form without an exponent."""
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _price(sku: Sku) -> str:
    if not sku.pricing_info:
        return ""
    rates = sku.pricing_info[0].pricing_expression.tiered_rates
    if not rates:
        return ""
    return _format_price(float(rates[-1].nanos) * 1e-9)


def write_skus_csv(skus: Iterable[Sku], stream: TextIO) -> int:
    """Write one row per SKU and region; returns the number of data rows."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(HEADER)
    rows = 0
    for sku in skus:
        category = sku.category.resource_family if sku.category is not None else ""
        price = _price(sku)
        for region in sku.service_regions:
            writer.writerow([sku.sku_id, sku.description, category, region, price])
            rows += 1
    return rows


def fetch_skus(
    client: CloudCatalogClient, service: str, output_file: str | PathLike[str]
) -> int:
    """Write every SKU of the service with this display name to a CSV file."""
    service_name = get_service_name(client, service)
    skus = get_pricing(client, service_name)
    with open(output_file, "w", newline="", encoding="utf-8") as stream:
        return write_skus_csv(skus, stream)