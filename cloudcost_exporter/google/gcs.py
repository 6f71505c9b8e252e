"""Cloud Storage cost collector: storage and operation prices, discounts and bucket info."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from cloudcost_exporter.google.billing import (
    CloudCatalogClient,
    ServiceNotFoundError,
    Sku,
    get_pricing,
    get_service_name,
)
from cloudcost_exporter.metrics import (
    EXPORTER_NAME,
    METRIC_PREFIX,
    CostCollector,
    CounterVec,
    Desc,
    Emit,
    Gauge,
    GaugeVec,
    HistogramVec,
    Registry,
    build_fq_name,
)

logger = logging.getLogger(__name__)

SUBSYSTEM = "gcp_gcs"
COLLECTOR_NAME = "GCS"
GIB_MONTHLY = "gibibyte month"
GIB_DAY = "gibibyte day"

STORAGE_CLASSES = ("Standard", "Regional", "Nearline", "Coldline", "Archive")
BASE_REGIONS = ("asia", "eu", "us", "asia1", "eur4", "nam4")

# Discounts on operations by location type, storage class and operation class.
OPERATIONS_DISCOUNTS: dict[str, dict[str, dict[str, float]]] = {
    "region": {
        "archive": {"class-a": 0.190, "class-b": 0.190},
        "coldline": {"class-a": 0.595, "class-b": 0.190},
        "nearline": {"class-a": 0.190, "class-b": 0.190},
        "standard": {"class-a": 0.190, "class-b": 0.190},
        "regional": {"class-a": 0.190, "class-b": 0.190},
    },
    "multi-region": {
        "coldline": {"class-a": 0.795, "class-b": 0.190},
        "nearline": {"class-a": 0.595, "class-b": 0.190},
        "standard": {"class-a": 0.595, "class-b": 0.190},
        "multi_regional": {"class-a": 0.595, "class-b": 0.190},
    },
    "dual-region": {
        "standard": {"class-a": 0.595, "class-b": 0.190},
        "multi_regional": {"class-a": 0.595, "class-b": 0.190},
    },
}


class InvalidSkuError(ValueError):
    """The SKU carries no pricing information."""


class UnknownPricingUnitError(ValueError):
    """The SKU is priced in a unit that cannot be converted to hours."""


class TaggingError(ValueError):
    """Tagging SKUs are not supported."""


@dataclass
class BucketAttrs:
    """The attributes of a bucket that the collector reports."""

    name: str = ""
    location: str = ""
    location_type: str = ""
    storage_class: str = ""


class StorageClient(Protocol):
    """Lists the buckets of a project."""

    def buckets(self, project: str) -> Iterable[BucketAttrs]: ...


class RegionsClient(Protocol):
    """Lists the names of the regions available to a project."""

    def list(self, project: str) -> Iterable[str]: ...


class BucketClient:
    """Lists buckets through a storage client."""

    def __init__(self, client: StorageClient) -> None:
        self._client = client

    def list(self, project: str) -> list[BucketAttrs]:
        """All buckets of a project; listing errors propagate."""
        logger.info("Listing buckets for project %s", project)
        return list(self._client.buckets(project))


class BucketCache:
    """Last known buckets per project, safe to share between threads."""

    def __init__(self) -> None:
        self._buckets: dict[str, list[BucketAttrs]] = {}
        self._lock = threading.Lock()

    def get(self, project: str) -> list[BucketAttrs]:
        with self._lock:
            return list(self._buckets.get(project, ()))

    def set(self, project: str, buckets: Sequence[BucketAttrs]) -> None:
        with self._lock:
            self._buckets[project] = list(buckets)


class GcsMetrics:
    """The metrics the Cloud Storage collector keeps up to date."""

    def __init__(self) -> None:
        self.storage_gauge = GaugeVec(
            build_fq_name(METRIC_PREFIX, SUBSYSTEM, "storage_by_location_usd_per_gibyte_hour"),
            "Storage cost of GCS objects by location and storage_class. "
            "Cost represented in USD/(GiB*h)",
            ["location", "storage_class"],
        )
        self.storage_discount_gauge = GaugeVec(
            build_fq_name(
                METRIC_PREFIX, SUBSYSTEM, "storage_discount_by_location_usd_per_gibyte_hour"
            ),
            "Discount for storage cost of GCS objects by location and storage_class. "
            "Cost represented in USD/(GiB*h)",
            ["location", "storage_class"],
        )
        self.operations_gauge = GaugeVec(
            build_fq_name(METRIC_PREFIX, SUBSYSTEM, "operation_by_location_usd_per_krequest"),
            "Operation cost of GCS objects by location, storage_class, and opclass. "
            "Cost represented in USD/(1k req)",
            ["location", "storage_class", "opclass"],
        )
        self.operations_discount_gauge = GaugeVec(
            build_fq_name(
                METRIC_PREFIX, SUBSYSTEM, "operation_discount_by_location_usd_per_krequest"
            ),
            "Discount for operation cost of GCS objects by location, storage_class, and "
            "opclass. Cost represented in USD/(1k req)",
            ["location_type", "storage_class", "opclass"],
        )
        self.bucket_info = GaugeVec(
            build_fq_name(METRIC_PREFIX, SUBSYSTEM, "bucket_info"),
            "Location, location_type and storage class information for a GCS object "
            "by bucket_name",
            ["location", "location_type", "storage_class", "bucket_name"],
        )
        self.next_scrape_gauge = Gauge(
            build_fq_name(EXPORTER_NAME, SUBSYSTEM, "next_scrape"),
            "The next time the exporter will scrape GCP billing data. "
            "Can be used to trigger alerts if now - nextScrape > interval",
        )
        self.bucket_list_histogram = HistogramVec(
            build_fq_name(EXPORTER_NAME, SUBSYSTEM, "bucket_list_duration_seconds"),
            "Histogram for the duration of GCS bucket list operations in seconds",
            ["project_id"],
        )
        self.bucket_list_status = CounterVec(
            build_fq_name(EXPORTER_NAME, SUBSYSTEM, "bucket_list_status_total"),
            "Status of GCS bucket list operations",
            ["project_id", "status"],
        )

    def all(self) -> list[object]:
        """Every metric in registration order."""
        return [
            self.storage_gauge,
            self.storage_discount_gauge,
            self.operations_discount_gauge,
            self.operations_gauge,
            self.bucket_info,
            self.bucket_list_histogram,
            self.bucket_list_status,
            self.next_scrape_gauge,
        ]


@dataclass
class GcsConfig:
    project_id: str = ""
    projects: str = ""  # comma-separated projects whose buckets are listed
    default_discount: int = 0
    scrape_interval: timedelta = timedelta(0)


class GcsCollector(CostCollector):
    """Exports Cloud Storage pricing, discounts and bucket information."""

    def __init__(
        self,
        config: GcsConfig,
        catalog_client: CloudCatalogClient | None,
        regions_client: RegionsClient,
        storage_client: StorageClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not config.project_id:
            raise ValueError("projectID cannot be empty")
        projects = config.projects.split(",")
        if projects == [""]:
            logger.info("No bucket projects specified, defaulting to %s", config.project_id)
            projects = [config.project_id]
        self.project_id = config.project_id
        self.projects = projects
        self.cached_buckets = BucketCache()
        self.metrics = GcsMetrics()
        self._catalog_client = catalog_client
        self._regions_client = regions_client
        self._bucket_client = BucketClient(storage_client)
        self._discount = config.default_discount
        self._interval = config.scrape_interval.total_seconds()
        self._clock = clock
        # Start in the past so that the first scrape runs at once.
        self._next_scrape = clock() - self._interval

    def name(self) -> str:
        return COLLECTOR_NAME

    def register(self, registry: Registry) -> None:
        logger.info("Registering GCS metrics")
        for metric in self.metrics.all():
            registry.register(metric)

    def describe(self, emit: Callable[[Desc], None]) -> None:
        """The metrics are registered directly, so nothing is described here."""

    def collect(self, emit: Emit) -> None:
        self.collect_metrics(emit)

    def collect_metrics(self, emit: Emit | None) -> float:
        """Refresh the metrics once the scrape interval has passed; 1.0 on success."""
        logger.info("Collecting GCS metrics")
        now = self._clock()
        if self._next_scrape > now:
            return 1.0
        self._next_scrape = self._clock() + self._interval
        self.metrics.next_scrape_gauge.set(float(int(self._next_scrape)))
        export_operations_discounts(self.metrics)
        try:
            export_regional_discounts(
                self._regions_client, self.project_id, self._discount, self.metrics
            )
        except Exception as err:
            logger.error("Error exporting regional discounts: %s", err)
        export_bucket_info(self._bucket_client, self.projects, self.cached_buckets, self.metrics)

        if self._catalog_client is None:
            logger.error("Error getting service name: no catalog client")
            return 0.0
        try:
            service_name = get_service_name(self._catalog_client, "Cloud Storage")
        except ServiceNotFoundError as err:
            logger.error("Error getting service name: %s", err)
            return 0.0
        return export_gcp_cost_data(self._catalog_client, service_name, self.metrics)


def export_bucket_info(
    client: BucketClient,
    projects: Sequence[str],
    cached_buckets: BucketCache,
    metrics: GcsMetrics,
) -> None:
    """Export bucket info for each project, falling back to cached buckets on error."""
    for project in projects:
        start = time.perf_counter()
        try:
            buckets = client.list(project)
        except Exception as err:
            logger.error("error listing buckets for %s: %s", project, err)
            metrics.bucket_list_histogram.with_label_values(project).observe(
                time.perf_counter() - start
            )
            metrics.bucket_list_status.with_label_values(project, "error").inc()
            buckets = cached_buckets.get(project)
            logger.info("pulling %d cached buckets for project %s", len(buckets), project)

        logger.info("updating cached buckets for %s", project)
        cached_buckets.set(project, buckets)

        for bucket in buckets:
            # Locations come in upper case; the metrics they join with use lower case.
            metrics.bucket_info.with_label_values(
                bucket.location.lower(), bucket.location_type, bucket.storage_class, bucket.name
            ).set(1)
        metrics.bucket_list_histogram.with_label_values(project).observe(
            time.perf_counter() - start
        )
        metrics.bucket_list_status.with_label_values(project, "success").inc()


def export_regional_discounts(
    client: RegionsClient, project_id: str, discount: int, metrics: GcsMetrics
) -> None:
    """Set the storage discount for every region and storage class."""
    regions = list(client.list(project_id))
    percent_discount = discount / 100.0
    for storage_class in STORAGE_CLASSES:
        for region in regions:
            metrics.storage_discount_gauge.with_label_values(
                region, storage_class.upper()
            ).set(percent_discount)
        # Multi-region buckets report "Regional" as MULTI_REGIONAL, as stackdriver does.
        base_class = "MULTI_REGIONAL" if storage_class == "Regional" else storage_class
        for region in BASE_REGIONS:
            metrics.storage_discount_gauge.with_label_values(
                region, base_class.upper()
            ).set(percent_discount)


def export_operations_discounts(metrics: GcsMetrics) -> None:
    """Set the fixed operation discounts."""
    for location_type, by_class in OPERATIONS_DISCOUNTS.items():
        for storage_class, by_op in by_class.items():
            for op_class, discount in by_op.items():
                metrics.operations_discount_gauge.with_label_values(
                    location_type, storage_class.upper(), op_class
                ).set(discount)


def export_gcp_cost_data(
    client: CloudCatalogClient, service_name: str, metrics: GcsMetrics
) -> float:
    """Export storage and operation prices for every SKU of the service."""
    for sku in get_pricing(client, service_name):
        if sku.category is not None and sku.category.resource_family == "Network":
            continue
        if sku.description.endswith("Data Retrieval"):
            continue
        if sku.description in ("Autoclass Management Fee", "Bucket Tagging Storage"):
            continue
        resource_group = sku.category.resource_group if sku.category is not None else ""
        if resource_group.endswith("Storage"):
            if "Early Delete" in sku.description:
                continue
            try:
                parse_storage_sku(sku, metrics)
            except ValueError as err:
                logger.error("error parsing storage sku: %s", err)
            continue
        if resource_group.endswith("Ops"):
            try:
                parse_op_sku(sku, metrics)
            except ValueError as err:
                logger.error("error parsing op sku: %s", err)
            continue
        logger.info("Unknown sku: %s", sku.description)
    return 1.0


def get_price_from_sku(sku: Sku) -> float:
    """Price in USD of the last tier of the first pricing info."""
    if not sku.pricing_info:
        raise InvalidSkuError(f"invalid sku:{sku.description}")
    rates = sku.pricing_info[0].pricing_expression.tiered_rates
    if not rates:
        raise ValueError(f"found sku without TieredRates: {sku}")
    # Earlier tiers are free tiers; the last one is the actual price.
    return 1e-9 * float(rates[-1].nanos)


def parse_storage_sku(sku: Sku, metrics: GcsMetrics) -> None:
    """Set the hourly storage price of a storage SKU."""
    price = get_price_from_sku(sku)
    unit = sku.pricing_info[0].pricing_expression.usage_unit_description
    if unit == GIB_MONTHLY:
        price = price / 31 / 24
    elif unit == GIB_DAY:
        price = price / 24
    else:
        raise UnknownPricingUnitError(f"unknown pricing unit:{sku.description}, {unit}")
    region = region_name_same_as_stackdriver(sku.service_regions[0])
    storage_class = storage_class_from_sku_description(sku.description, region)
    metrics.storage_gauge.with_label_values(region, storage_class).set(price)


def parse_op_sku(sku: Sku, metrics: GcsMetrics) -> None:
    """Set the price of an operations SKU."""
    if "Tagging" in sku.description:
        raise TaggingError("tagging sku's is not supported")
    price = get_price_from_sku(sku)
    region = region_name_same_as_stackdriver(sku.service_regions[0])
    storage_class = storage_class_from_sku_description(sku.description, region)
    op_class = op_class_from_sku_description(sku.description)
    metrics.operations_gauge.with_label_values(region, storage_class, op_class).set(price)


def storage_class_from_sku_description(s: str, region: str) -> str:
    """Normalise a SKU description to the storage class stackdriver reports."""
    if "Coldline" in s:
        return "COLDLINE"
    if "Nearline" in s:
        return "NEARLINE"
    if "Durable Reduced Availability" in s:
        return "DRA"
    if "Archive" in s:
        return "ARCHIVE"
    if "Dual-Region" in s or "Dual-region" in s:
        # Iowa and South Carolina bill their dual-region storage as REGIONAL.
        if region in ("us-central1", "us-east1"):
            return "REGIONAL"
        return "MULTI_REGIONAL"
    if "Multi-Region" in s or "Multi-region" in s:
        return "MULTI_REGIONAL"
    if "Regional" in s or "Storage" in s or "Standard" in s:
        return "REGIONAL"
    return s


def op_class_from_sku_description(s: str) -> str:
    """"class-a" or "class-b" when the description names the class, else the description."""
    if "Class A" in s:
        return "class-a"
    if "Class B" in s:
        return "class-b"
    return s


def region_name_same_as_stackdriver(s: str) -> str:
    """Map the pricing API's "europe" to stackdriver's "eu"; other names are unchanged."""
    return "eu" if s == "europe" else s