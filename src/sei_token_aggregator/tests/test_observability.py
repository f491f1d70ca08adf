from __future__ import annotations

import json
import logging

from sei_token_aggregator.monitoring.logger import (
    StructuredFormatter,
    correlation_scope,
    current_correlation_id,
)
from sei_token_aggregator.monitoring.metrics import METRICS


def test_correlation_scope_sets_and_restores_id() -> None:
    assert current_correlation_id() == "-"
    with correlation_scope("refresh-1") as value:
        assert value == "refresh-1"
        assert current_correlation_id() == "refresh-1"
        with correlation_scope() as generated:
            assert len(generated) == 12
            assert current_correlation_id() == generated
        assert current_correlation_id() == "refresh-1"
    assert current_correlation_id() == "-"


def test_structured_formatter_emits_json_with_extras() -> None:
    record = logging.LogRecord("sei.test", logging.INFO, __file__, 1, "Loaded %d tokens", (3,), None)
    record.correlation_id = "abc"
    record.refresh_id = "abc"

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "Loaded 3 tokens"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "abc"
    assert payload["extra"] == {"refresh_id": "abc"}


def test_prometheus_export_sanitizes_metric_names() -> None:
    METRICS.reset()
    METRICS.increment("source.coingecko.rate_limited")
    METRICS.gauge("snapshot.tokens", 42)
    METRICS.observe("refresh.duration_seconds", 1.5)
    output = METRICS.export_prometheus()
    lines = [line for line in output.splitlines() if line]
    assert "# TYPE source_coingecko_rate_limited counter" in lines
    assert "source.coingecko" not in output
    assert "snapshot_tokens 42.0" in lines
    assert any(line.startswith("refresh_duration_seconds{quantile=\"p50\"}") for line in lines)
    METRICS.reset()
