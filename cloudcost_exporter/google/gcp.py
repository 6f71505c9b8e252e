"""The GCP provider: builds the service collectors and reports on their scrapes."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta

from cloudcost_exporter.google.billing import CloudCatalogClient
from cloudcost_exporter.google.gcs import GcsCollector, GcsConfig, RegionsClient, StorageClient
from cloudcost_exporter.google.gke.gke import ComputeService, GkeCollector, GkeConfig
from cloudcost_exporter.metrics import (
    EXPORTER_NAME,
    CostCollector,
    CounterVec,
    Desc,
    Emit,
    Metric,
    Registry,
    ValueType,
    build_fq_name,
    new_const_metric,
)

logger = logging.getLogger(__name__)

SUBSYSTEM = "gcp"

PROVIDER_LAST_SCRAPE_ERROR_DESC = Desc(
    build_fq_name(EXPORTER_NAME, "", "last_scrape_error"),
    "Was the last scrape an error. 1 indicates an error.", ("provider",),
)
PROVIDER_LAST_SCRAPE_DURATION_DESC = Desc(
    build_fq_name(EXPORTER_NAME, "", "last_scrape_duration_seconds"),
    "Duration of the last scrape in seconds.", ("provider",),
)
PROVIDER_LAST_SCRAPE_TIME_DESC = Desc(
    build_fq_name(EXPORTER_NAME, "", "last_scrape_time"),
    "Time of the last scrape.", ("provider",),
)
COLLECTOR_LAST_SCRAPE_ERROR_DESC = Desc(
    build_fq_name(EXPORTER_NAME, "collector", "last_scrape_error"),
    "Was the last scrape an error. 1 indicates an error.", ("provider", "collector"),
)
COLLECTOR_DURATION_DESC = Desc(
    build_fq_name(EXPORTER_NAME, "collector", "last_scrape_duration_seconds"),
    "Duration of the last scrape in seconds.", ("provider", "collector"),
)
COLLECTOR_LAST_SCRAPE_TIME_DESC = Desc(
    build_fq_name(EXPORTER_NAME, "collector", "last_scrape_time"),
    "Time of the last scrape.", ("provider", "collector"),
)


@dataclass
class GcpConfig:
    project_id: str = ""  # project the exporter runs in
    region: str = ""
    projects: str = ""  # comma-separated projects to scrape
    services: list[str] = field(default_factory=list)
    scrape_interval: timedelta = timedelta(0)
    default_discount: int = 0


class Gcp:
    """Runs the GCP service collectors and exports scrape statistics."""

    def __init__(self, config: GcpConfig, collectors: Sequence[CostCollector] = ()) -> None:
        self.config = config
        self.collectors = list(collectors)
        self.provider_scrapes_total = CounterVec(
            build_fq_name(EXPORTER_NAME, "", "scrapes_total"),
            "Total number of scrapes.", ["provider"],
        )
        self.collector_scrapes_total = CounterVec(
            build_fq_name(EXPORTER_NAME, "collector", "scrapes_total"),
            "Total number of scrapes for a collector.", ["provider", "collector"],
        )

    @classmethod
    def from_config(
        cls,
        config: GcpConfig,
        compute_service: ComputeService,
        catalog_client: CloudCatalogClient,
        regions_client: RegionsClient,
        storage_client: StorageClient,
    ) -> Gcp:
        """Create the collectors for the configured services; failures are logged and skipped."""
        collectors: list[CostCollector] = []
        for service in config.services:
            logger.info("Creating service %s", service)
            kind = service.upper()
            try:
                if kind == "GCS":
                    collector: CostCollector = GcsCollector(
                        GcsConfig(
                            project_id=config.project_id,
                            projects=config.projects,
                            default_discount=config.default_discount,
                            scrape_interval=config.scrape_interval,
                        ),
                        catalog_client, regions_client, storage_client,
                    )
                elif kind == "GKE":
                    collector = GkeCollector(
                        GkeConfig(projects=config.projects,
                                  scrape_interval=config.scrape_interval),
                        compute_service, catalog_client,
                    )
                else:
                    logger.error("Error creating service %s, does not exist", service)
                    continue
            except Exception as err:
                logger.error("Error creating collector %s: %s", service, err)
                continue
            collectors.append(collector)
        return cls(config, collectors)

    def register_collectors(self, registry: Registry) -> None:
        """Register the scrape counters and every collector's metrics."""
        registry.register(self.provider_scrapes_total)
        registry.register(self.collector_scrapes_total)
        for collector in self.collectors:
            collector.register(registry)

    def describe(self, emit: Callable[[Desc], None]) -> None:
        for desc in (COLLECTOR_LAST_SCRAPE_ERROR_DESC, COLLECTOR_DURATION_DESC,
                     PROVIDER_LAST_SCRAPE_ERROR_DESC, PROVIDER_LAST_SCRAPE_DURATION_DESC,
                     COLLECTOR_LAST_SCRAPE_TIME_DESC, PROVIDER_LAST_SCRAPE_TIME_DESC):
            emit(desc)
        for collector in self.collectors:
            try:
                collector.describe(emit)
            except Exception as err:
                logger.error("Error calling describe: %s", err)

    def _collect_one(self, collector: CostCollector, emit: Emit) -> None:
        start = time.perf_counter()
        name = collector.name()
        errors = 0.0
        try:
            collector.collect(emit)
        except Exception as err:
            logger.error("Error collecting metrics from %s: %s", name, err)
            errors = 1.0
        duration = time.perf_counter() - start
        logger.info("Collect of %s finished in %.3fs", name, duration)
        emit(new_const_metric(COLLECTOR_LAST_SCRAPE_ERROR_DESC, ValueType.GAUGE, errors,
                              SUBSYSTEM, name))
        emit(new_const_metric(COLLECTOR_DURATION_DESC, ValueType.GAUGE, duration,
                              SUBSYSTEM, name))
        emit(new_const_metric(COLLECTOR_LAST_SCRAPE_TIME_DESC, ValueType.GAUGE,
                              float(int(time.time())), SUBSYSTEM, name))
        self.collector_scrapes_total.with_label_values(SUBSYSTEM, name).inc()

    def collect(self, emit: Emit) -> None:
        """Run every collector concurrently, then emit the provider's scrape statistics."""
        lock = threading.Lock()

        def safe_emit(metric: Metric) -> None:
            with lock:
                emit(metric)

        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=max(1, len(self.collectors))) as pool:
            list(pool.map(lambda c: self._collect_one(c, safe_emit), self.collectors))
        safe_emit(new_const_metric(PROVIDER_LAST_SCRAPE_ERROR_DESC, ValueType.GAUGE, 0.0,
                                   SUBSYSTEM))
        safe_emit(new_const_metric(PROVIDER_LAST_SCRAPE_DURATION_DESC, ValueType.GAUGE,
                                   time.perf_counter() - start, SUBSYSTEM))
        safe_emit(new_const_metric(PROVIDER_LAST_SCRAPE_TIME_DESC, ValueType.GAUGE,
                                   float(int(time.time())), SUBSYSTEM))
        self.provider_scrapes_total.with_label_values(SUBSYSTEM).inc()