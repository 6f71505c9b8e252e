import time
from datetime import timedelta

import pytest

from cloudcost_exporter.google.billing import (
    StaticCloudCatalog,
    fake_compute_catalog,
    fake_compute_catalog_slim,
)
from cloudcost_exporter.google.gke.disk import (
    BOOT_DISK_LABEL,
    IDLE_DISK,
    IN_USE_DISK,
    DiskResource,
)
from cloudcost_exporter.google.gke.gke import (
    GkeCollector,
    GkeConfig,
    ListInstancesError,
    list_disks,
    list_instances_in_zone,
)
from cloudcost_exporter.google.gke.machinespec import GKE_CLUSTER_LABEL, InstanceResource
from cloudcost_exporter.google.gke.pricing_map import PricingMapInitError
from cloudcost_exporter.metrics import read_metrics

CPU = "cloudcost_gcp_gke_instance_cpu_usd_per_core_hour"
MEM = "cloudcost_gcp_gke_instance_memory_usd_per_gib_hour"
PV = "cloudcost_gcp_gke_persistent_volume_usd_per_hour"


def _instance(name, machine_type, zone, model):
    return InstanceResource(name=name, zone=zone, machine_type=machine_type,
                            provisioning_model=model, labels={GKE_CLUSTER_LABEL: "test"})


INSTANCES = [
    _instance("test-n1", "abc/n1-slim", "testing/us-central1-a", "test"),
    _instance("test-n2", "abc/n2-slim", "testing/us-central1-a", "test"),
    _instance("test-n1-spot", "abc/n1-slim", "testing/us-central1-a", "SPOT"),
    # A machine family that is not in the pricing map.
    _instance("test-n1-spot", "abc/n8-slim", "testing/us-central1-a", "SPOT"),
    _instance("test-n2-us-east1", "abc/n2-slim", "testing/us-east1-a", "test"),
]

DESCRIPTION = '{"kubernetes.io/created-for/pvc/namespace":"cloudcost-exporter"}'

DISKS = [
    DiskResource(name="test-disk", zone="testing/us-central1-a",
                 labels={GKE_CLUSTER_LABEL: "test", BOOT_DISK_LABEL: ""},
                 description=DESCRIPTION, type="pd-standard", users=["node-1"]),
    DiskResource(name="test-ssd-disk", zone="testing/us-east4",
                 labels={GKE_CLUSTER_LABEL: "test"},
                 description=DESCRIPTION, type="pd-ssd", size_gb=600),
    # A duplicated disk must not cause a second metric.
    DiskResource(name="test-ssd-disk", zone="testing/us-east4",
                 labels={GKE_CLUSTER_LABEL: "test", BOOT_DISK_LABEL: ""},
                 description=DESCRIPTION, type="pd-ssd", size_gb=600),
]


class FakeCompute:
    def __init__(self, zones=("us-central1-a",), instances=(), disks=(), fail=False):
        self.zones = list(zones)
        self.instances = list(instances)
        self.disks = list(disks)
        self.fail = fail

    def list_zones(self, project):
        if self.fail:
            raise RuntimeError("500 Internal Server Error")
        return list(self.zones)

    def list_instances(self, project, zone, page_token):
        return list(self.instances), ""

    def list_disks(self, project, zone):
        return list(self.disks)


class PagedCompute:
    def __init__(self, pages, fail=False):
        self.pages = pages
        self.fail = fail
        self.tokens = []

    def list_instances(self, project, zone, page_token):
        self.tokens.append(page_token)
        if self.fail:
            raise RuntimeError("boom")
        return self.pages[page_token]


@pytest.fixture
def make_collector():
    created = []

    def factory(config, compute, catalog=None, **kwargs):
        collector = GkeCollector(config, compute, catalog or fake_compute_catalog(), **kwargs)
        created.append(collector)
        return collector

    yield factory
    for collector in created:
        collector.close()


def _instance_results(project, instance, family, machine_type, tier, region):
    labels = {"family": family, "instance": instance, "machine_type": machine_type,
              "price_tier": tier, "project": project, "region": region, "cluster_name": "test"}
    return [(CPU, labels, 1.0), (MEM, labels, 1.0)]


def _expected(project):
    rows = []
    rows += _instance_results(project, "test-n1", "n1", "n1-slim", "ondemand", "us-central1")
    rows += _instance_results(project, "test-n2", "n2", "n2-slim", "ondemand", "us-central1")
    rows += _instance_results(project, "test-n1-spot", "n1", "n1-slim", "spot", "us-central1")
    rows += _instance_results(project, "test-n2-us-east1", "n2", "n2-slim", "ondemand",
                              "us-east1")
    rows.append((PV, {"cluster_name": "test", "namespace": "cloudcost-exporter",
                      "persistentvolume": "test-disk", "region": "us-central1",
                      "project": project, "storage_class": "pd-standard",
                      "disk_type": "boot_disk", "use_status": IN_USE_DISK}, 0.0))
    rows.append((PV, {"cluster_name": "test", "namespace": "cloudcost-exporter",
                      "persistentvolume": "test-ssd-disk", "region": "us-east4",
                      "project": project, "storage_class": "pd-ssd",
                      "disk_type": "persistent_volume", "use_status": IDLE_DISK},
                 0.15359342915811086))
    return rows


def _key(fq_name, labels):
    return fq_name, tuple(sorted(labels.items()))


def test_collect_parses_regular_response(make_collector):
    collector = make_collector(GkeConfig(projects="testing,testing-1"),
                               FakeCompute(instances=INSTANCES, disks=DISKS))
    metrics = []
    assert collector.collect_metrics(metrics.append) == 1.0
    results = [read_metrics(m) for m in metrics]
    expected = _expected("testing") + _expected("testing-1")
    assert len(results) == len(expected)
    got = {_key(r.fq_name, r.labels): r.value for r in results}
    want = {_key(name, labels): value for name, labels, value in expected}
    assert got.keys() == want.keys()
    assert got == pytest.approx(want)


def test_collect_handles_zone_listing_error(make_collector):
    collector = make_collector(GkeConfig(projects="testing"), FakeCompute(fail=True))
    metrics = []
    assert collector.collect_metrics(metrics.append) == 0.0
    assert metrics == []
    with pytest.raises(RuntimeError, match="500"):
        collector.collect(metrics.append)


def test_instances_without_cluster_are_skipped(make_collector):
    bare = InstanceResource(name="vm", zone="testing/us-central1-a",
                            machine_type="abc/n1-slim", provisioning_model="test")
    collector = make_collector(GkeConfig(projects="testing"), FakeCompute(instances=[bare]))
    metrics = []
    collector.collect(metrics.append)
    assert metrics == []


def test_name_and_describe(make_collector):
    collector = make_collector(GkeConfig(projects="testing"), FakeCompute())
    descs = []
    collector.describe(descs.append)
    assert collector.name() == "gcp_gke"
    assert [d.fq_name for d in descs] == [CPU, MEM]
    assert collector.projects == ["testing"]


def test_new_fails_without_compute_engine_service():
    with pytest.raises(PricingMapInitError):
        GkeCollector(GkeConfig(projects="testing"), FakeCompute(), StaticCloudCatalog([], []))


def test_prices_are_refreshed(make_collector):
    slim = fake_compute_catalog_slim()
    full = fake_compute_catalog()
    calls = []

    class SwitchingCatalog:
        """Serves the slim catalog on the first load and the full one afterwards."""

        def _current(self):
            return slim if len(calls) <= 1 else full

        def list_services(self):
            calls.append(1)
            return self._current().list_services()

        def list_skus(self, parent):
            return self._current().list_skus(parent)

    n2 = _instance("test-n2", "abc/n2-slim", "testing/us-central1-a", "test")
    collector = make_collector(GkeConfig(projects="testing"),
                               FakeCompute(instances=[n2]), SwitchingCatalog(),
                               refresh_interval=timedelta(milliseconds=10))

    expected = {CPU: 1.0, MEM: 1.0}
    values = {}
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        metrics = []
        collector.collect(metrics.append)
        values = {r.fq_name: r.value for r in map(read_metrics, metrics)}
        if values == expected:
            break
        time.sleep(0.01)
    assert values == expected
    assert len(calls) >= 2


def test_list_instances_follows_pages():
    pages = {
        "": ([_instance("a", "abc/n1-slim", "p/us-central1-a", "SPOT")], "next"),
        "next": ([_instance("b", "abc/n2-slim", "p/us-east1-b", "test")], ""),
    }
    service = PagedCompute(pages)
    specs = list_instances_in_zone("p", "us-central1-a", service)
    assert [s.instance for s in specs] == ["a", "b"]
    assert [s.price_tier for s in specs] == ["spot", "ondemand"]
    assert service.tokens == ["", "next"]


def test_list_instances_wraps_errors():
    with pytest.raises(ListInstancesError, match="no list price was found for the sku: boom"):
        list_instances_in_zone("p", "z", PagedCompute({}, fail=True))


def test_list_disks_returns_all():
    disks = list_disks("p", "z", FakeCompute(disks=DISKS))
    assert [d.name for d in disks] == ["test-disk", "test-ssd-disk", "test-ssd-disk"]