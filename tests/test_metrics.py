import pytest

from cloudcost_exporter.metrics import (
    Counter,
    CounterVec,
    Desc,
    Gauge,
    GaugeVec,
    Histogram,
    HistogramVec,
    MetricResult,
    Registry,
    ValueType,
    build_fq_name,
    generate_desc,
    new_const_metric,
    parse_fq_name_from_metric,
    read_metrics,
)


def test_generate_desc():
    prefix = "test_prefix"
    subsystem = "test_subsystem"
    suffix = "test_suffix"
    description = "This is a test description"
    labels = ["label1", "label2"]

    desc = generate_desc(prefix, subsystem, suffix, description, labels)
    text = str(desc)

    assert build_fq_name(prefix, subsystem, suffix) in text
    assert description in text
    for label in labels:
        assert label in text


def test_build_fq_name_skips_empty_parts():
    assert build_fq_name("cloudcost_exporter", "", "last_scrape_error") == (
        "cloudcost_exporter_last_scrape_error"
    )
    assert build_fq_name("a", "b", "") == ""


@pytest.mark.parametrize(
    "arg,want",
    [
        ("", ""),
        ('fqName: "aws_s3_bucket_size_bytes"', "aws_s3_bucket_size_bytes"),
        (
            'FqName:"Desc{fqName: "cloudcost_exporter_gcp_collector_success", help: "Was the last '
            'scrape of the GCP metrics successful.", constLabels: {}, variableLabels: {collector}}"',
            "cloudcost_exporter_gcp_collector_success",
        ),
    ],
)
def test_parse_fq_name_from_metric(arg, want):
    assert parse_fq_name_from_metric(arg) == want


def test_parse_fq_name_without_name_raises():
    with pytest.raises(ValueError):
        parse_fq_name_from_metric("no name here")


def test_read_gauge_metric_round_trip():
    desc = Desc("cloudcost_exporter_last_scrape_error", "help", ("provider",))
    metric = new_const_metric(desc, ValueType.GAUGE, 0, "gcp")
    assert read_metrics(metric) == MetricResult(
        "cloudcost_exporter_last_scrape_error", {"provider": "gcp"}, 0.0, ValueType.GAUGE
    )


def test_read_counter_metric_has_no_name():
    counter = Counter("cloudcost_exporter_scrapes_total", "help")
    counter.inc()
    (metric,) = counter.collect()
    result = read_metrics(metric)
    assert result.fq_name == ""
    assert result.value == 1.0
    assert result.metric_type is ValueType.COUNTER


def test_read_none_and_histogram():
    assert read_metrics(None) is None
    hist = Histogram("h", "help")
    hist.observe(0.2)
    (metric,) = hist.collect()
    assert read_metrics(metric) is None


def test_new_const_metric_label_mismatch():
    desc = Desc("m", "help", ("a", "b"))
    with pytest.raises(ValueError):
        new_const_metric(desc, ValueType.GAUGE, 1.0, "only-one")


def test_gauge_set_and_inc():
    gauge = Gauge("g", "help")
    gauge.set(2.5)
    gauge.inc()
    (metric,) = gauge.collect()
    assert metric.value == 3.5
    assert list(gauge.describe())[0].fq_name == "g"


def test_counter_rejects_negative():
    counter = Counter("c", "help")
    with pytest.raises(ValueError):
        counter.add(-1)


def test_histogram_buckets_are_cumulative():
    hist = Histogram("h", "help", buckets=(1.0, 2.0))
    hist.observe(0.5)
    hist.observe(1.5)
    (metric,) = hist.collect()
    assert metric.count == 2
    assert metric.value == 2.0
    assert metric.buckets == ((1.0, 1), (2.0, 2))


def test_gauge_vec_children_are_shared():
    vec = GaugeVec("gv", "help", ["location", "storage_class"])
    vec.with_label_values("us", "STANDARD").set(1)
    vec.with_label_values("us", "STANDARD").inc()
    metrics = list(vec.collect())
    assert len(metrics) == 1
    assert metrics[0].value == 2.0
    assert metrics[0].labels() == {"location": "us", "storage_class": "STANDARD"}
    with pytest.raises(ValueError):
        vec.with_label_values("us")


def test_counter_and_histogram_vecs():
    counters = CounterVec("cv", "help", ["project_id", "status"])
    counters.with_label_values("p", "success").inc()
    assert [m.value for m in counters.collect()] == [1.0]
    hists = HistogramVec("hv", "help", ["project_id"])
    hists.with_label_values("p").observe(0.1)
    assert [m.count for m in hists.collect()] == [1]
    assert [d.variable_labels for d in hists.describe()] == [("project_id",)]


def test_registry_gathers_and_rejects_duplicates():
    registry = Registry()
    vec = GaugeVec("b_metric", "help", ["x"])
    vec.with_label_values("2").set(2)
    vec.with_label_values("1").set(1)
    registry.register(vec)
    registry.register(Gauge("a_metric", "help"))
    gathered = registry.gather()
    assert [m.desc.fq_name for m in gathered] == ["a_metric", "b_metric", "b_metric"]
    assert [m.value for m in gathered[1:]] == [1.0, 2.0]
    with pytest.raises(ValueError):
        registry.register(Gauge("a_metric", "other"))
    with pytest.raises(ValueError):
        registry.register(vec)


def test_registry_accepts_emit_style_collectors():
    desc = Desc("emitted", "help")

    class EmitCollector:
        def describe(self, emit):
            emit(desc)

        def collect(self, emit):
            emit(new_const_metric(desc, ValueType.GAUGE, 7))

    registry = Registry()
    registry.register(EmitCollector())
    assert [m.value for m in registry.gather()] == [7.0]