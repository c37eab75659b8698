"""Exposition of the scheduling metrics registry."""

from studio.monitoring.prometheus_metrics import PrometheusMetrics, prometheus_metrics


def test_content_type_is_prometheus_text():
    assert PrometheusMetrics.get_content_type().startswith("text/plain")


def test_recorded_metrics_are_exposed():
    prometheus_metrics.record_conflict("room")
    prometheus_metrics.record_ledger_mutation("deduct", 2)
    prometheus_metrics.record_registration("waitlisted")
    prometheus_metrics.record_service_operation(
        "ClassBookingService", "book", 0.01, status="error", error_type="NoCreditsAvailableException"
    )

    output = PrometheusMetrics.get_metrics().decode("utf-8")

    assert 'studio_conflicts_detected_total{resource_kind="room"}' in output
    assert 'studio_credit_ledger_mutations_total{operation="deduct"}' in output
    assert 'studio_registrations_total{outcome="waitlisted"}' in output
    assert 'error_type="NoCreditsAvailableException"' in output

