"""Collection engine interface and the default WSGI handler.

The engine is what actually talks to Redis. The bootstrap only needs a
narrow slice of it: a factory taking the Redis address, the assembled
options and the registry, and an object that is a WSGI application, a
Prometheus collector, and able to build both TLS contexts.
"""

import base64
import binascii
import hmac
import logging
import platform
import ssl
from html import escape
from typing import Callable, Iterable, Protocol

from prometheus_client import CollectorRegistry, make_wsgi_app
from prometheus_client.core import GaugeMetricFamily, Metric

from redis_exporter import tls
from redis_exporter.settings import ExporterOptions

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>Redis Exporter {version}</title></head>
<body>
<h1>Redis Exporter {version}</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""


class Exporter(Protocol):
    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]: ...

    def collect(self) -> Iterable[Metric]: ...

    def create_client_tls_config(self) -> ssl.SSLContext: ...

    def create_server_tls_config(
        self, cert_file: str, key_file: str, ca_cert_file: str, min_version: str
    ) -> ssl.SSLContext | None: ...


ExporterFactory = Callable[[str, ExporterOptions, CollectorRegistry], Exporter]


class RedisExporter:
    """Default collection engine.

    Serves the registry on the configured metrics path behind optional basic
    auth, plus a landing page and a health endpoint. Scraping Redis itself
    is left to the engine implementation plugged in through the factory.
    """

    def __init__(
        self, redis_addr: str, options: ExporterOptions, registry: CollectorRegistry
    ) -> None:
        self.redis_addr = redis_addr
        self.options = options
        self._metrics_app = make_wsgi_app(registry)

    def collect(self) -> Iterable[Metric]:
        build_info = GaugeMetricFamily(
            f"{self.options.namespace}_exporter_build_info",
            "redis exporter build_info",
            labels=["version", "commit_sha", "build_date", "python_version"],
        )
        build_info.add_metric(
            [
                self.options.build_info.version,
                self.options.build_info.commit_sha,
                self.options.build_info.date,
                platform.python_version(),
            ],
            1,
        )
        yield build_info

    def create_client_tls_config(self) -> ssl.SSLContext:
        return tls.create_client_tls_context(self.options.client_tls)

    def create_server_tls_config(
        self, cert_file: str, key_file: str, ca_cert_file: str, min_version: str
    ) -> ssl.SSLContext | None:
        return tls.create_server_tls_context(
            cert_file, key_file, ca_cert_file, min_version
        )

    def _is_authorized(self, environ: dict) -> bool:
        header = environ.get("HTTP_AUTHORIZATION", "")
        scheme, _, encoded = header.partition(" ")
        if scheme.lower() != "basic":
            return False
        try:
            decoded = base64.b64decode(encoded.strip(), validate=True)
        except (binascii.Error, ValueError):
            return False
        username, sep, password = decoded.partition(b":")
        if not sep:
            return False
        # evaluate both to keep the comparison time independent of which part is wrong
        user_ok = hmac.compare_digest(
            username, self.options.basic_auth_username.encode("utf-8")
        )
        password_ok = hmac.compare_digest(
            password, self.options.basic_auth_password.encode("utf-8")
        )
        return user_ok and password_ok

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if self.options.basic_auth_enabled and not self._is_authorized(environ):
            start_response(
                "401 Unauthorized",
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("WWW-Authenticate", 'Basic realm="redis-exporter"'),
                ],
            )
            return [b"Unauthorized\n"]

        path = environ.get("PATH_INFO") or "/"
        if path == self.options.metrics_path:
            return self._metrics_app(environ, start_response)
        if path == "/health":
            start_response("200 OK", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"ok"]
        if path == "/":
            body = LANDING_PAGE.format(
                version=escape(self.options.build_info.version),
                metrics_path=escape(self.options.metrics_path),
            )
            start_response("200 OK", [("Content-Type", "text/html; charset=utf-8")])
            return [body.encode("utf-8")]

        start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
        return [b"Not Found\n"]


def new_redis_exporter(
    redis_addr: str, options: ExporterOptions, registry: CollectorRegistry
) -> RedisExporter:
    return RedisExporter(redis_addr, options, registry)
