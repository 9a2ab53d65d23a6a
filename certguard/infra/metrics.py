"""Prometheus instruments for certguard.

Every process owns one ``Metrics`` object with a private registry so test runs
and app instances never collide on the default global registry. When metrics
are disabled the recorders are no-ops.
"""

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest

LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        self._instruments: dict[str, Counter | Gauge | Histogram] = {}
        if not enabled:
            return
        self._add(Counter, "compliance_snapshots_total", "Sealed snapshots by source and status.", "source", "status")
        self._add(Counter, "dispatch_assignments_total", "Dispatch compliance gate outcomes.", "outcome")
        self._add(Counter, "assignment_notifications_total", "Assignment notification deliveries by status.", "status")
        self._add(Counter, "email_adapter_outcomes_total", "Email adapter send outcomes.", "status")
        self._add(Gauge, "outbox_queue_messages", "Outbox events by status (pending, retry, dead).", "status")
        self._add(Counter, "job_errors_total", "Background job failures by job and reason.", "job", "reason")
        self._instruments["http_request_latency_seconds"] = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency by route template.",
            ["method", "path", "status_class"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )

    def _add(self, kind, name: str, documentation: str, *labels: str) -> None:
        self._instruments[name] = kind(name, documentation, list(labels), registry=self.registry)

    def _labels(self, name: str, **labels: str):
        instrument = self._instruments.get(name)
        if instrument is None:
            return None
        return instrument.labels(**{key: value or "unknown" for key, value in labels.items()})

    def _inc(self, name: str, **labels: str) -> None:
        child = self._labels(name, **labels)
        if child is not None:
            child.inc()

    def record_snapshot(self, source: str, status: str) -> None:
        self._inc("compliance_snapshots_total", source=source, status=status)

    def record_assignment(self, outcome: str) -> None:
        self._inc("dispatch_assignments_total", outcome=outcome)

    def record_notification(self, status: str) -> None:
        self._inc("assignment_notifications_total", status=status)

    def record_email_adapter(self, status: str) -> None:
        self._inc("email_adapter_outcomes_total", status=status)

    def record_job_error(self, job: str, reason: str) -> None:
        self._inc("job_errors_total", job=job, reason=reason)

    def set_outbox_depth(self, status: str, count: int) -> None:
        child = self._labels("outbox_queue_messages", status=status)
        if child is not None:
            child.set(max(0, count))

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        child = self._labels("http_request_latency_seconds", method=method, path=path, status_class=status_class)
        if child is not None:
            child.observe(max(0.0, duration_seconds))

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    """Reset the shared instance in place so modules holding ``metrics`` see the new registry."""
    metrics._configure(enabled)
    return metrics
