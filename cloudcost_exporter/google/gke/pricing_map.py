"""Compute and disk prices per region, built from the Compute Engine billing catalog."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum

from cloudcost_exporter.google.billing import (
    CloudCatalogClient,
    ServiceNotFoundError,
    Sku,
    get_pricing,
    get_service_name,
)
from cloudcost_exporter.google.gke.machinespec import MachineSpec
from cloudcost_exporter.metrics import HOURS_IN_MONTH

logger = logging.getLogger(__name__)

PRICE_REFRESH_INTERVAL = timedelta(hours=24)


class PricingError(Exception):
    """Base of the pricing errors."""

    message = "pricing error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class SkuNotFoundError(PricingError):
    message = "no sku was interested in us"


class SkuIsNilError(PricingError):
    message = "sku is nil"


class SkuNotParsableError(PricingError):
    message = "can't parse sku"


class SkuNotRelevantError(PricingError):
    message = "sku isn't relevant for the current use cases"


class PricingDataIsOffError(PricingError):
    message = "pricing data in sku isn't parsable"


class RegionNotFoundError(PricingError, LookupError):
    message = "region wasn't found in pricing map"


class FamilyTypeNotFoundError(PricingError, LookupError):
    message = "family wasn't found in pricing map for this region"


class PricingMapInitError(PricingError):
    message = "failed to populate pricing map"


_ON_DEMAND_RE = re.compile(
    r"^(?P<spot>Spot Preemptible )?"
    r"(?:(?P<machineType>\w{1,3})|(?P<optimized> ?Compute optimized))"
    r"(?: Predefined)?"
    r"(?P<chipset> (Arm|AMD))?"
    r"(?: Instance)? "
    r"(?P<resource>Core|Ram)"
    r" running in \w+(?: \w+){0,2}$",
    re.ASCII,
)

IGNORE_LIST = (
    "Network",
    "Nvidia",
    "Sole Tenancy",
    "Cloud Interconnect - ",
    "Commitment v1: ",
    "Custom",
    "Micro Instance",
    "Small Instance",
    "Memory-optimized",
)

# Disk SKU description prefixes and the storage classes they price.
STORAGE_CLASSES = {
    "Storage PD Capacity": "pd-standard",
    "SSD backed PD Capacity": "pd-ssd",
    "Balanced PD Capacity": "pd-balanced",
    "Extreme PD Capacity": "pd-extreme",
    "Hyperdisk Balanced Capacity": "hyperdisk-balanced",
}


class PriceTier(IntEnum):
    ON_DEMAND = 0
    SPOT = 1


class Resource(IntEnum):
    CPU = 0
    RAM = 1
    STORAGE = 2


@dataclass
class ParsedSkuData:
    """One price of a SKU in one region; the price is in nano-USD."""

    region: str
    price_tier: PriceTier
    price: int
    description: str
    compute_resource: Resource


@dataclass
class Prices:
    cpu: float = 0.0
    ram: float = 0.0


@dataclass
class PriceTiers:
    on_demand: Prices = field(default_factory=Prices)
    spot: Prices = field(default_factory=Prices)


@dataclass
class FamilyPricing:
    """Price tiers by machine family."""

    family: dict[str, PriceTiers] = field(default_factory=dict)


@dataclass
class StoragePrices:
    provisioned_space_gib: float = 0.0
    throughput: float = 0.0
    iops: float = 0.0


@dataclass
class StoragePricing:
    """Storage prices by storage class."""

    storage: dict[str, StoragePrices] = field(default_factory=dict)


def get_resource_type(resource: str) -> Resource:
    return Resource.RAM if resource == "Ram" else Resource.CPU


def get_pricing_info_from_sku(sku: Sku) -> int:
    """Price in nano-USD of the first tier of the first pricing info."""
    if not sku.pricing_info:
        raise ValueError(f"no pricing info found for sku {sku.name}")
    rates = sku.pricing_info[0].pricing_expression.tiered_rates
    if not rates:
        raise ValueError(f"no tiered rates found for sku {sku.name}")
    return rates[0].nanos


def get_data_from_sku(sku: Sku | None) -> list[ParsedSkuData]:
    """Parse a SKU into one price per region it serves."""
    if sku is None:
        raise SkuIsNilError()
    if any(ignored in sku.description for ignored in IGNORE_LIST):
        raise SkuNotRelevantError(sku.description)

    match = _ON_DEMAND_RE.match(sku.description)
    if match is not None:
        try:
            price = get_pricing_info_from_sku(sku)
        except ValueError as err:
            raise PricingDataIsOffError(str(err)) from err
        machine_type = (match["machineType"] or "").lower()
        if match["optimized"]:
            machine_type = "c2"
        tier = PriceTier.SPOT if match["spot"] else PriceTier.ON_DEMAND
        resource = get_resource_type(match["resource"])
        return [
            ParsedSkuData(region, tier, price, machine_type, resource)
            for region in sku.service_regions
        ]

    if sku.category is not None and sku.category.resource_family == "Storage":
        rates = (
            sku.pricing_info[0].pricing_expression.tiered_rates if sku.pricing_info else []
        )
        if not rates:
            raise PricingDataIsOffError(sku.description)
        price = rates[-1].nanos
        return [
            ParsedSkuData(region, PriceTier.ON_DEMAND, price, sku.description, Resource.STORAGE)
            for region in sku.service_regions
        ]

    raise SkuNotParsableError(sku.description)


def _storage_class_for(description: str) -> str:
    # Match on prefix so that "Regional ..." variants are not mistaken for zonal disks.
    for prefix, storage_class in STORAGE_CLASSES.items():
        if description.startswith(prefix):
            return storage_class
    return ""


@dataclass
class PricingMap:
    """Compute prices by region and family, and disk prices by region and class."""

    compute: dict[str, FamilyPricing] = field(default_factory=dict)
    storage: dict[str, StoragePricing] = field(default_factory=dict)

    @classmethod
    def from_catalog(cls, client: CloudCatalogClient) -> PricingMap:
        pricing_map = cls()
        pricing_map.populate(client)
        return pricing_map

    def populate(self, client: CloudCatalogClient) -> None:
        """Load the Compute Engine SKUs from the catalog and parse them."""
        try:
            service_name = get_service_name(client, "Compute Engine")
        except ServiceNotFoundError as err:
            raise PricingMapInitError(str(err)) from err
        skus = get_pricing(client, service_name)
        if not skus:
            raise SkuNotFoundError()
        self.parse_skus(skus)

    def parse_skus(self, skus: Iterable[Sku | None]) -> None:
        """Update the map from SKUs; SKUs that are not relevant are skipped."""
        for sku in skus:
            try:
                parsed = get_data_from_sku(sku)
            except (SkuNotRelevantError, PricingDataIsOffError, SkuNotParsableError):
                continue
            for data in parsed:
                if data.compute_resource is Resource.STORAGE:
                    self._add_storage(data)
                else:
                    self._add_compute(data)

    def _add_compute(self, data: ParsedSkuData) -> None:
        family = self.compute.setdefault(data.region, FamilyPricing())
        tiers = family.family.setdefault(data.description, PriceTiers())
        prices = tiers.spot if data.price_tier is PriceTier.SPOT else tiers.on_demand
        price = float(data.price) * 1e-9
        if data.compute_resource is Resource.RAM:
            prices.ram = price
        else:
            prices.cpu = price

    def _add_storage(self, data: ParsedSkuData) -> None:
        # Only capacity is priced; IOPS and throughput are not counted.
        region = self.storage.setdefault(data.region, StoragePricing())
        storage_class = _storage_class_for(data.description)
        if not storage_class:
            logger.debug("Storage class not found for %s. Skipping", data.description)
            return
        if "Confidential" in data.description:
            logger.debug("Storage class contains Confidential: %s %s",
                         storage_class, data.description)
            return
        prices = region.storage.setdefault(storage_class, StoragePrices())
        if prices.provisioned_space_gib != 0.0:
            logger.debug("Storage class %s already exists in region %s",
                         storage_class, data.region)
            return
        prices.provisioned_space_gib = float(data.price) * 1e-9 / HOURS_IN_MONTH

    def get_cost_of_instance(self, instance: MachineSpec | None) -> tuple[float, float]:
        """Hourly (cpu, ram) prices for an instance."""
        if not self.compute or instance is None:
            raise RegionNotFoundError()
        region = self.compute.get(instance.region)
        if region is None:
            raise RegionNotFoundError(instance.region)
        tiers = region.family.get(instance.family)
        if tiers is None:
            raise FamilyTypeNotFoundError(instance.family)
        prices = tiers.spot if instance.spot_instance else tiers.on_demand
        return prices.cpu, prices.ram

    def get_cost_of_storage(self, region: str, storage_class: str) -> float:
        """Hourly price per GiB of a storage class in a region."""
        if not self.storage:
            raise RegionNotFoundError()
        pricing = self.storage.get(region)
        if pricing is None:
            raise RegionNotFoundError(region)
        prices = pricing.storage.get(storage_class)
        if prices is None:
            raise FamilyTypeNotFoundError(storage_class)
        return prices.provisioned_space_gib