"""GKE cost collector: node CPU and memory prices and persistent volume costs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from cloudcost_exporter.google.billing import CloudCatalogClient
from cloudcost_exporter.google.gke.disk import Disk, DiskResource
from cloudcost_exporter.google.gke.machinespec import InstanceResource, MachineSpec
from cloudcost_exporter.google.gke.pricing_map import (
    PRICE_REFRESH_INTERVAL,
    PricingError,
    PricingMap,
)
from cloudcost_exporter.metrics import (
    INSTANCE_CPU_COST_SUFFIX,
    INSTANCE_MEMORY_COST_SUFFIX,
    METRIC_PREFIX,
    PERSISTENT_VOLUME_COST_SUFFIX,
    CostCollector,
    Desc,
    Emit,
    Registry,
    ValueType,
    generate_desc,
    new_const_metric,
)

logger = logging.getLogger(__name__)

SUBSYSTEM = "gcp_gke"

# "cluster" alone would clash with labels added by other scrapers.
_INSTANCE_LABELS = (
    "cluster_name", "instance", "region", "family", "machine_type", "project", "price_tier",
)

GKE_NODE_MEMORY_HOURLY_COST_DESC = generate_desc(
    METRIC_PREFIX, SUBSYSTEM, INSTANCE_MEMORY_COST_SUFFIX,
    "The memory cost of a GKE Instance in USD/(GiB*h)", _INSTANCE_LABELS,
)
GKE_NODE_CPU_HOURLY_COST_DESC = generate_desc(
    METRIC_PREFIX, SUBSYSTEM, INSTANCE_CPU_COST_SUFFIX,
    "The CPU cost of a GKE Instance in USD/(core*h)", _INSTANCE_LABELS,
)
PERSISTENT_VOLUME_HOURLY_COST_DESC = generate_desc(
    METRIC_PREFIX, SUBSYSTEM, PERSISTENT_VOLUME_COST_SUFFIX,
    "The cost of a GKE Persistent Volume in USD/h",
    ("cluster_name", "namespace", "persistentvolume", "region", "project",
     "storage_class", "disk_type", "use_status"),
)


class ListInstancesError(Exception):
    """Listing the instances of a zone failed."""

    message = "no list price was found for the sku"

    def __init__(self, detail: str = "") -> None:
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class ComputeService(Protocol):
    """The parts of the compute API the collector uses."""

    def list_zones(self, project: str) -> Iterable[str]: ...

    def list_instances(
        self, project: str, zone: str, page_token: str
    ) -> tuple[Sequence[InstanceResource], str]: ...

    def list_disks(self, project: str, zone: str) -> Iterable[DiskResource]: ...


@dataclass
class GkeConfig:
    projects: str = ""  # comma-separated projects to scrape
    scrape_interval: timedelta = timedelta(0)


def list_disks(project: str, zone: str, service: ComputeService) -> list[DiskResource]:
    """All disks of a zone."""
    return list(service.list_disks(project, zone))


def list_instances_in_zone(
    project_id: str, zone: str, service: ComputeService
) -> list[MachineSpec]:
    """All instances of a zone, following pages, as machine specs."""
    specs: list[MachineSpec] = []
    token = ""
    while True:
        try:
            items, token = service.list_instances(project_id, zone, token)
        except Exception as err:
            raise ListInstancesError(str(err)) from err
        specs.extend(MachineSpec.from_instance(item) for item in items)
        if not token:
            return specs


class GkeCollector(CostCollector):
    """Exports hourly costs of GKE nodes and persistent volumes."""

    def __init__(
        self,
        config: GkeConfig,
        compute_service: ComputeService,
        catalog_client: CloudCatalogClient,
        *,
        refresh_interval: timedelta = PRICE_REFRESH_INTERVAL,
    ) -> None:
        self.config = config
        self.projects = config.projects.split(",")
        self.pricing_map = PricingMap.from_catalog(catalog_client)
        self._compute = compute_service
        self._catalog = catalog_client
        self._stop = threading.Event()
        self._refresher = threading.Thread(
            target=self._refresh_prices,
            args=(refresh_interval.total_seconds(),),
            name="gke-price-refresh",
            daemon=True,
        )
        self._refresher.start()

    def __enter__(self) -> GkeCollector:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _refresh_prices(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.pricing_map = PricingMap.from_catalog(self._catalog)
            except Exception as err:
                logger.error("refreshing pricing map failed: %s", err)

    def close(self) -> None:
        """Stop refreshing prices."""
        self._stop.set()
        self._refresher.join(timeout=5)

    def name(self) -> str:
        return SUBSYSTEM

    def register(self, registry: Registry) -> None:
        """Metrics are emitted on collection, so nothing is registered."""

    def describe(self, emit: Callable[[Desc], None]) -> None:
        emit(GKE_NODE_CPU_HOURLY_COST_DESC)
        emit(GKE_NODE_MEMORY_HOURLY_COST_DESC)

    def collect_metrics(self, emit: Emit) -> float:
        try:
            self.collect(emit)
        except Exception as err:
            logger.error("failed to collect metrics: %s", err)
            return 0.0
        return 1.0

    def _instances_in_zone(self, project: str, zone: str) -> list[MachineSpec]:
        try:
            specs = list_instances_in_zone(project, zone, self._compute)
        except Exception as err:
            logger.error("error listing instances in zone %s of %s: %s", zone, project, err)
            return []
        logger.info("finished listing instances in zone %s of %s", zone, project)
        return specs

    def _disks_in_zone(self, project: str, zone: str) -> list[DiskResource]:
        try:
            return list_disks(project, zone, self._compute)
        except Exception as err:
            logger.error("error listing disks in zone %s of %s: %s", zone, project, err)
            return []

    def collect(self, emit: Emit) -> None:
        pricing_map = self.pricing_map
        for project in self.projects:
            zones = list(self._compute.list_zones(project))
            with ThreadPoolExecutor(max_workers=max(1, 2 * len(zones))) as pool:
                instance_futures = [
                    pool.submit(self._instances_in_zone, project, zone) for zone in zones
                ]
                disk_futures = [pool.submit(self._disks_in_zone, project, zone) for zone in zones]
                instance_groups = [future.result() for future in instance_futures]
                disk_groups = [future.result() for future in disk_futures]

            for group in instance_groups:
                for instance in group:
                    self._emit_instance(emit, pricing_map, project, instance)

            # Disks may share a name; only the first one is reported.
            seen: set[str] = set()
            for group in disk_groups:
                for resource in group:
                    disk = Disk.from_resource(resource, project)
                    if disk.name() in seen:
                        continue
                    seen.add(disk.name())
                    self._emit_disk(emit, pricing_map, disk)

    @staticmethod
    def _emit_instance(
        emit: Emit, pricing_map: PricingMap, project: str, instance: MachineSpec
    ) -> None:
        cluster_name = instance.cluster_name()
        if not cluster_name:
            logger.debug("instance %s does not have a cluster name", instance.instance)
            return
        try:
            cpu_cost, ram_cost = pricing_map.get_cost_of_instance(instance)
        except PricingError as err:
            logger.error("%s (machine_type=%s region=%s project=%s)",
                         err, instance.machine_type, instance.region, project)
            return
        labels = (cluster_name, instance.instance, instance.region, instance.family,
                  instance.machine_type, project, instance.price_tier)
        emit(new_const_metric(GKE_NODE_CPU_HOURLY_COST_DESC, ValueType.GAUGE, cpu_cost, *labels))
        emit(new_const_metric(GKE_NODE_MEMORY_HOURLY_COST_DESC, ValueType.GAUGE, ram_cost,
                              *labels))

    @staticmethod
    def _emit_disk(emit: Emit, pricing_map: PricingMap, disk: Disk) -> None:
        region, storage_class = disk.region(), disk.storage_class()
        try:
            price = pricing_map.get_cost_of_storage(region, storage_class)
        except PricingError as err:
            logger.error("%s (disk=%s project=%s region=%s storage_class=%s)",
                         err, disk.disk_name, disk.project, region, storage_class)
            return
        emit(new_const_metric(
            PERSISTENT_VOLUME_HOURLY_COST_DESC, ValueType.GAUGE, float(disk.size) * price,
            disk.cluster, disk.namespace(), disk.name(), region, disk.project,
            storage_class, disk.disk_type(), disk.use_status(),
        ))