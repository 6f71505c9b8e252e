# cloudcost-exporter

Cost metrics for Google Cloud in the Prometheus data model. The package
reads prices from the Cloud Billing catalog and turns them into hourly
gauges:

- **GCS** (`cloudcost_exporter.google.gcs.GcsCollector`): storage cost per
  GiB-hour and operation cost per thousand requests, by location and
  storage class, plus per-bucket info gauges, storage and operation
  discount gauges, and bucket-listing duration and status metrics.
- **GKE** (`cloudcost_exporter.google.gke.gke.GkeCollector`): CPU cost per
  core-hour and memory cost per GiB-hour for every instance that carries a
  GKE cluster label, and the hourly cost of each disk (size × price per
  GiB-hour).

It depends on nothing outside the standard library. The cloud APIs are
reached through small client interfaces that you supply:

| Interface | Module | Methods |
| --- | --- | --- |
| `CloudCatalogClient` | `cloudcost_exporter.google.billing` | `list_services()`, `list_skus(parent)` |
| `StorageClient` | `cloudcost_exporter.google.gcs` | `buckets(project)` |
| `RegionsClient` | `cloudcost_exporter.google.gcs` | `list(project)` |
| `ComputeService` | `cloudcost_exporter.google.gke.gke` | `list_zones(project)`, `list_instances(project, zone, page_token)`, `list_disks(project, zone)` |

`StaticCloudCatalog` is an in-memory catalog; `fake_compute_catalog()` and
`fake_compute_catalog_slim()` return small Compute Engine catalogs for
trying things out and for tests.

## Metric names

| Metric | Labels |
| --- | --- |
| `cloudcost_gcp_gke_instance_cpu_usd_per_core_hour` | cluster_name, instance, region, family, machine_type, project, price_tier |
| `cloudcost_gcp_gke_instance_memory_usd_per_gib_hour` | cluster_name, instance, region, family, machine_type, project, price_tier |
| `cloudcost_gcp_gke_persistent_volume_usd_per_hour` | cluster_name, namespace, persistentvolume, region, project, storage_class, disk_type, use_status |
| `cloudcost_gcp_gcs_storage_by_location_usd_per_gibyte_hour` | location, storage_class |
| `cloudcost_gcp_gcs_storage_discount_by_location_usd_per_gibyte_hour` | location, storage_class |
| `cloudcost_gcp_gcs_operation_by_location_usd_per_krequest` | location, storage_class, opclass |
| `cloudcost_gcp_gcs_operation_discount_by_location_usd_per_krequest` | location_type, storage_class, opclass |
| `cloudcost_gcp_gcs_bucket_info` | location, location_type, storage_class, bucket_name |

The `Gcp` provider also reports `cloudcost_exporter_last_scrape_error`,
`cloudcost_exporter_last_scrape_duration_seconds`,
`cloudcost_exporter_last_scrape_time` and `cloudcost_exporter_scrapes_total`
(label `provider`), and the same per collector under
`cloudcost_exporter_collector_*` (labels `provider`, `collector`).

## Looking up prices

```python
from cloudcost_exporter.google.billing import fake_compute_catalog, get_pricing, get_service_name
from cloudcost_exporter.google.gke.pricing_map import PricingMap

catalog = fake_compute_catalog()
service = get_service_name(catalog, "Compute Engine")
skus = get_pricing(catalog, service)

pricing = PricingMap.from_catalog(catalog)
print(pricing.get_cost_of_storage("us-east4", "pd-ssd"))
```

`get_service_name` raises `ServiceNotFoundError` when no service has the
given display name. `PricingMap.from_catalog` raises `PricingMapInitError`
when there is no "Compute Engine" service and `SkuNotFoundError` when it
has no SKUs. `get_cost_of_instance` and `get_cost_of_storage` raise
`RegionNotFoundError` or `FamilyTypeNotFoundError` when the map holds no
price for the request.

## Collecting metrics

```python
from cloudcost_exporter.google.gcp import Gcp, GcpConfig
from cloudcost_exporter.metrics import Registry, read_metrics

config = GcpConfig(project_id="my-project", services=["GCS", "GKE"])
provider = Gcp.from_config(config, compute_service, catalog_client,
                           regions_client, storage_client)

registry = Registry()
provider.register_collectors(registry)

emitted = []
provider.collect(emitted.append)
for metric in emitted:
    print(read_metrics(metric))

for metric in registry.gather():   # registered gauges, counters, histograms
    print(metric.desc.fq_name, metric.labels(), metric.value)
```

`Gcp.from_config` creates a collector for each service named `GCS` or
`GKE` (case does not matter); unknown names and collectors that fail to
start are logged and skipped. `collect(emit)` runs every collector in its
own thread and passes each `Metric` to `emit`, followed by the scrape
statistics.

The GCS collector emits nothing itself: it updates gauges that
`register_collectors` has added to the registry, and refreshes them at
most once per `scrape_interval`. The GKE collector emits its cost metrics
on each collect and reloads its pricing map from the catalog in a
background thread every 24 hours; call its `close()`, or use it as a
context manager, to stop that thread.

`read_metrics` turns a metric into a plain `MetricResult` with its name,
labels, value and `ValueType`.

## Exporting SKUs to CSV

`cloudcost_exporter.google.fetch_skus.fetch_skus(client, service, output_file)`
writes every SKU of the catalog service with that display name to a CSV
file with the columns `sku_id, description, category, region, pricing_info`,
one row per service region, the price being the last pricing tier in USD.
`write_skus_csv(skus, stream)` does the same to an open text stream. Both
return the number of data rows written.

## Logging

Modules log through the standard `logging` package.
`cloudcost_exporter.logconfig` provides `get_log_level` (`debug`, `info`,
`warn`, `error`; anything else gives INFO), `writer_for_output` (`stdout`
or `stderr`), and `handler_for_output`, which gives a stream handler
writing JSON lines for `json` and `key=value` text otherwise.
`LevelHandler` wraps a handler and drops records below a minimum level.

## What the package does not do

- It has no command-line program and does not serve metrics over HTTP or
  render the Prometheus text format; you call `collect` or
  `Registry.gather` and export the results yourself.
- It ships no clients for the real Google Cloud APIs; you provide objects
  that implement the interfaces above.
- Only Google Cloud Storage and GKE are covered.