"""Cloud billing catalog model: services and SKUs, with lookups over a catalog client."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class TierRate:
    """One pricing tier; the unit price is given in nano-USD."""

    nanos: int = 0
    start_usage_amount: float = 0.0
    currency_code: str = ""


@dataclass
class PricingExpression:
    tiered_rates: list[TierRate] = field(default_factory=list)
    usage_unit_description: str = ""


@dataclass
class PricingInfo:
    pricing_expression: PricingExpression = field(default_factory=PricingExpression)


@dataclass
class Category:
    resource_family: str = ""
    resource_group: str = ""
    service_display_name: str = ""


@dataclass
class Sku:
    """A billable item of a service."""

    name: str = ""
    description: str = ""
    category: Category | None = None
    service_regions: list[str] = field(default_factory=list)
    pricing_info: list[PricingInfo] = field(default_factory=list)
    sku_id: str = ""


@dataclass
class Service:
    name: str
    display_name: str


class CloudCatalogClient(Protocol):
    """Anything that can list billing services and their SKUs."""

    def list_services(self) -> Iterable[Service]: ...

    def list_skus(self, parent: str) -> Iterable[Sku]: ...


class ServiceNotFoundError(LookupError):
    """No service with the requested display name exists."""

    def __init__(self, name: str = "") -> None:
        super().__init__(f"service not found: {name}" if name else "service not found")


class StaticCloudCatalog:
    """A catalog held in memory; every parent lists the same SKUs."""

    def __init__(self, services: Sequence[Service], skus: Sequence[Sku]) -> None:
        self._services = list(services)
        self._skus = list(skus)

    def list_services(self) -> Iterator[Service]:
        yield from self._services

    def list_skus(self, parent: str) -> Iterator[Sku]:
        yield from self._skus


def get_service_name(client: CloudCatalogClient, name: str) -> str:
    """Return the full name of the service whose display name is `name`."""
    for service in client.list_services():
        if service.display_name == name:
            return service.name
    raise ServiceNotFoundError(name)


def get_pricing(client: CloudCatalogClient, service_name: str) -> list[Sku]:
    """Return every SKU of a service; a listing error is logged and ends the listing."""
    skus: list[Sku] = []
    try:
        for sku in client.list_skus(service_name):
            skus.append(sku)
    except Exception as err:  # keep what was gathered so far
        logger.error("error listing skus for %s: %s", service_name, err)
    return skus


_ONE_USD_NANOS = 1_000_000_000
_COMPUTE_ENGINE = Service(name="compute-engine", display_name="Compute Engine")


def _compute_sku(name: str, description: str, regions: Sequence[str] = ("us-central1",)) -> Sku:
    rate = TierRate(nanos=_ONE_USD_NANOS, currency_code="USD")
    return Sku(
        name=name,
        description=description,
        service_regions=list(regions),
        pricing_info=[PricingInfo(PricingExpression([rate]))],
    )


def _storage_sku(name: str, description: str, region: str, *nanos: int) -> Sku:
    return Sku(
        name=name,
        description=description,
        service_regions=[region],
        category=Category(resource_family="Storage"),
        pricing_info=[PricingInfo(PricingExpression([TierRate(nanos=n) for n in nanos]))],
    )


def fake_compute_catalog() -> StaticCloudCatalog:
    """A small Compute Engine catalog with compute and disk SKUs."""
    both = ("us-central-1", "us-east1")
    skus = [
        _compute_sku("test", "N1 Predefined Instance Core running in Americas"),
        _compute_sku("test2", "N1 Predefined Instance Ram running in Americas"),
        _compute_sku("test-spot", "Spot Preemptible N1 Instance Core running in Americas"),
        _compute_sku("test2-spot", "Spot Preemptible N1 Instance Ram running in Americas"),
        _compute_sku("test", "N2 Predefined Instance Core running in Americas"),
        _compute_sku("test2", "N2 Predefined Instance Ram running in Americas"),
        _compute_sku("us-east1 as part of us-central-1 compute",
                     "N2 Predefined Instance Core running in Americas", both),
        _compute_sku("us-east1 as part of us-central-1 memory",
                     "N2 Predefined Instance Ram running in Americas", both),
        _storage_sku("standard-storage", "Storage PD Capacity", "us-central1", 0, _ONE_USD_NANOS),
        _storage_sku("SSD Storage", "SSD backed PD Capacity", "us-east4", 187000000),
    ]
    return StaticCloudCatalog([_COMPUTE_ENGINE], skus)


def fake_compute_catalog_slim() -> StaticCloudCatalog:
    """A Compute Engine catalog with a single compute SKU and a single disk SKU."""
    skus = [
        _compute_sku("test", "N1 Predefined Instance Core running in Americas"),
        _storage_sku("standard-storage", "Storage PD Capacity", "us-central1", 0, _ONE_USD_NANOS),
    ]
    return StaticCloudCatalog([_COMPUTE_ENGINE], skus)