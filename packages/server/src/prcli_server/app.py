"""HTTP front end for the webhook dispatcher and service wiring."""

from __future__ import annotations

import logging
import signal
import threading
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from prcli_core.config import CommandContext
from prcli_server.dispatcher import Request, WebhookDispatcher
from prcli_server.metrics import Metrics
from prcli_server.processor import JobProcessor
from prcli_server.ratelimit import RateLimiter
from prcli_server.worker import WorkerPool

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 25 * 1024 * 1024
RATE_LIMIT_CLEANUP_INTERVAL = 300


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """``":8080"`` -> ``("", 8080)``, ``"127.0.0.1:9000"`` -> ``("127.0.0.1", 9000)``."""
    host, _, port = addr.rpartition(":")
    if not port.isdigit():
        raise ValueError(f"invalid listen address {addr!r}, expected [host]:port")
    return host.strip("[]"), int(port)


def _package_version() -> str:
    try:
        return version("prcli")
    except PackageNotFoundError:
        return "unknown"


def make_handler(dispatcher: WebhookDispatcher, timeout: float) -> type[BaseHTTPRequestHandler]:
    class WebhookHandler(BaseHTTPRequestHandler):
        server_version = "prcli"

        def setup(self):
            self.timeout = timeout
            super().setup()

        def log_message(self, fmt, *args):
            logger.debug("http %s - %s", self.address_string(), fmt % args)

        def _serve(self, method: str) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            if length > MAX_BODY_BYTES:
                self.send_error(HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
                return
            body = self.rfile.read(length) if length else b""
            response = dispatcher.handle(
                Request(
                    method=method,
                    path=self.path,
                    headers=dict(self.headers.items()),
                    body=body,
                    remote_addr=self.client_address[0],
                )
            )
            data = response.encode()
            self.send_response(response.status)
            self.send_header("Content-Type", response.content_type)
            self.send_header("Content-Length", str(len(data)))
            for key, value in response.headers.items():
                self.send_header(key, value)
            self.end_headers()
            self.wfile.write(data)

        def do_GET(self):  # noqa: N802
            self._serve("GET")

        def do_POST(self):  # noqa: N802
            self._serve("POST")

    return WebhookHandler


@dataclass
class Service:
    server: ThreadingHTTPServer
    dispatcher: WebhookDispatcher
    pool: Optional[WorkerPool]
    rate_limiter: Optional[RateLimiter]
    shutdown_timeout: float
    _stop: threading.Event

    def serve_forever(self) -> None:
        host, port = self.server.server_address[:2]
        logger.info("Listening on %s:%s", host or "0.0.0.0", port)
        try:
            self.server.serve_forever()
        finally:
            self.close()

    def shutdown(self) -> None:
        """Stop accepting requests; serve_forever returns and drains the pool."""
        threading.Thread(target=self.server.shutdown, daemon=True).start()

    def close(self) -> None:
        self._stop.set()
        self.server.server_close()
        if self.pool is not None:
            drained = self.pool.shutdown(self.shutdown_timeout)
            logger.info("Worker pool drained cleanly: %s", drained)


def _cleanup_loop(limiter: RateLimiter, stop: threading.Event) -> None:
    while not stop.wait(RATE_LIMIT_CLEANUP_INTERVAL):
        removed = limiter.cleanup()
        if removed:
            logger.debug("Evicted %d idle rate-limit buckets", removed)


def build_service(config: dict, client_factory=None) -> Service:
    """Wire context, processor, pool, limiter and dispatcher from a loaded config."""
    webhook = config["webhook"]
    base_context = CommandContext.from_config(config)
    metrics = Metrics()

    processor_kwargs = {"client_factory": client_factory} if client_factory else {}
    processor = JobProcessor(base_context, webhook, metrics=metrics, **processor_kwargs)

    pool = None
    if webhook.get("async_processing", True):
        pool = WorkerPool(
            processor, worker_count=int(webhook["worker_count"]), queue_size=int(webhook["queue_size"]), metrics=metrics
        )
        processor.submit = pool.submit

    stop = threading.Event()
    limiter = None
    rate = webhook.get("rate_limit") or {}
    if rate.get("enabled", True):
        limiter = RateLimiter(int(rate.get("rpm") or 100))
        threading.Thread(target=_cleanup_loop, args=(limiter, stop), name="prcli-ratelimit-gc", daemon=True).start()

    dispatcher = WebhookDispatcher(
        webhook, processor, pool=pool, metrics=metrics, rate_limiter=limiter, version=_package_version()
    )
    handler = make_handler(dispatcher, float(webhook.get("ingress_timeout") or 5))
    server = ThreadingHTTPServer(parse_listen_addr(webhook["listen_addr"]), handler)
    server.daemon_threads = True
    if pool is not None:
        pool.start()
    return Service(server, dispatcher, pool, limiter, float(webhook.get("shutdown_timeout") or 30), stop)


def serve(config: dict) -> None:
    """Run the webhook service until SIGINT/SIGTERM."""
    service = build_service(config)

    def _on_signal(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        service.shutdown()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)
    webhook = config["webhook"]
    logger.info(
        "Webhook %s, health %s, metrics %s (async=%s, workers=%s, queue=%s)",
        webhook["webhook_path"],
        webhook["health_path"],
        webhook["metrics_path"],
        webhook["async_processing"],
        webhook["worker_count"],
        webhook["queue_size"],
    )
    if not webhook.get("require_signature"):
        logger.warning("Webhook signature validation is disabled.")
    service.serve_forever()
