"""Flask application factory and HTTP routes."""

from __future__ import annotations

import logging

from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from werkzeug.middleware.proxy_fix import ProxyFix

from ..config import AppConfig

LOGGER = logging.getLogger(__name__)

INDEX_HTML = (
    "<html><body><h1>Welcome to speedtest-exporter</h1>"
    "Click <a href='/metrics'>here</a> to see metrics.</body></html>"
)


def create_web_app(config: AppConfig, registry: CollectorRegistry) -> Flask:
    app = Flask(__name__)

    if config.web.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    @app.route("/")
    def index():
        return Response(INDEX_HTML, mimetype="text/html")

    @app.get("/metrics")
    def metrics():
        # A cache miss blocks this request for the duration of a speedtest
        LOGGER.debug("Serving metrics scrape")
        return Response(generate_latest(registry), headers={"Content-Type": CONTENT_TYPE_LATEST})

    return app
