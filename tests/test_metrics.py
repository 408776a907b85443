from unified_rag.metrics import MetricsCollector


def test_empty_report_has_zero_latencies():
    report = MetricsCollector().get_report()

    assert report["search_requests_total"] == 0
    assert report["search_latency_p99_ms"] == 0
    assert report["cache_hit_ratio"] == 0


def test_report_aggregates_counters_and_percentiles():
    metrics = MetricsCollector()
    for ms in range(1, 101):
        metrics.record_search_latency(float(ms))
    metrics.record_cache_hit()
    metrics.record_cache_miss()
    metrics.record_cache_miss()
    metrics.record_store()
    metrics.record_soft_failures(2)
    metrics.record_error("index_failed")

    report = metrics.get_report()

    assert report["search_requests_total"] == 100
    assert report["search_latency_p50_ms"] == 50.5
    assert report["cache_hit_ratio"] == 1 / 3
    assert report["store_requests_total"] == 1
    assert report["soft_failures_total"] == 2
    assert report["errors"] == {"index_failed": 1}


def test_latency_window_is_bounded():
    metrics = MetricsCollector()
    for _ in range(1500):
        metrics.record_search_latency(1.0)

    assert len(metrics.search_latencies) == 1000
