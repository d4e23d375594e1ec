# donation_app/utils/monitoring.py

"""
Prometheus scrape endpoint for the importer counters.
"""

from flask import Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest


def init_monitoring(app, registry=REGISTRY):
    """Expose ``registry`` at ``METRICS_ENDPOINT`` when ``MONITORING_ENABLED`` is set."""
    if not app.config.get("MONITORING_ENABLED", False):
        return

    endpoint = app.config.get("METRICS_ENDPOINT", "/metrics")

    def metrics():
        return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)

    app.add_url_rule(endpoint, "metrics", metrics, methods=["GET"])
    app.logger.info("Prometheus metrics exposed at %s", endpoint)
