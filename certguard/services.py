from __future__ import annotations

from dataclasses import dataclass

from certguard.infra.email import EmailAdapter, NoopEmailAdapter, resolve_email_adapter
from certguard.infra.metrics import Metrics, configure_metrics


@dataclass
class AppServices:
    """Runtime services shared by the API process and the job runner."""

    email_adapter: EmailAdapter | NoopEmailAdapter
    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        email_adapter=resolve_email_adapter(app_settings),
        metrics=metrics_client,
    )
