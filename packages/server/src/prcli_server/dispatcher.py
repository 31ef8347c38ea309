"""Webhook ingress, independent of the HTTP server in front of it.

``WebhookDispatcher.handle`` takes a framed request (method, path, headers,
raw body, peer address) and returns a Response:

  POST <webhook_path>  platform -> signature -> rate limit -> parse -> allow-list -> enqueue
  GET  <health_path>   200, or 503 when the queue is nearly full or shutting down
  GET  <metrics_path>  Prometheus text
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Union

from prcli_core.errors import EventError, SkippedEventError
from prcli_core.events import DEFAULT_PR_ACTIONS, detect_platform, header, is_command_event, parse_event
from prcli_core.models import EventKind, Platform
from prcli_server.worker import Job

if TYPE_CHECKING:
    from prcli_server.metrics import Metrics
    from prcli_server.processor import JobProcessor
    from prcli_server.ratelimit import RateLimiter
    from prcli_server.worker import WorkerPool

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

# Health turns 503 above this share of queue capacity.
QUEUE_WATERMARK = 0.95


@dataclass
class Request:
    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes = b""
    remote_addr: str = ""


@dataclass
class Response:
    status: int
    body: Union[dict, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return "application/json" if isinstance(self.body, dict) else "text/plain; version=0.0.4; charset=utf-8"

    def encode(self) -> bytes:
        if isinstance(self.body, dict):
            return json.dumps(self.body).encode("utf-8")
        return self.body.encode("utf-8")


def verify_github_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of ``X-Hub-Signature-256`` (``sha256=<hex>``)."""
    if not signature or not signature.startswith("sha256=") or not secret:
        return False
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def verify_gitlab_token(token: str, secret: str) -> bool:
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def repository_allowed(owner: str, name: str, allowed: list[str]) -> bool:
    """Match ``owner/name`` against exact, ``owner/*`` and ``*`` patterns. Empty list allows all."""
    if not allowed:
        return True
    full_name = f"{owner}/{name}"
    for pattern in allowed:
        if pattern == "*" or pattern == full_name:
            return True
        if pattern.endswith("/*") and pattern[:-2] == owner:
            return True
    return False


def client_ip(headers: Mapping[str, str], remote_addr: str) -> str:
    forwarded = header(headers, "X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = header(headers, "X-Real-IP")
    if real_ip:
        return real_ip
    host = remote_addr
    if host.count(":") == 1:
        host = host.rsplit(":", 1)[0]
    return host


class WebhookDispatcher:
    def __init__(
        self,
        webhook_config: dict,
        processor: JobProcessor,
        pool: WorkerPool | None = None,
        metrics: Metrics | None = None,
        rate_limiter: RateLimiter | None = None,
        version: str = "unknown",
    ):
        self.config = webhook_config
        self.processor = processor
        self.pool = pool
        self.metrics = metrics
        self.rate_limiter = rate_limiter
        self.version = version
        self.started_at = time.monotonic()
        pr_events = webhook_config.get("pr_events") or {}
        self.pr_actions = tuple(pr_events.get("actions") or DEFAULT_PR_ACTIONS)

    # ---- routing --------------------------------------------------------- #

    def handle(self, request: Request) -> Response:
        start = time.monotonic()
        try:
            response = self._route(request)
        except Exception:
            logger.exception("Unhandled error serving %s %s", request.method, request.path)
            response = Response(500, {"error": "internal server error"})
        response.headers.update(SECURITY_HEADERS)
        logger.info(
            "%s %s -> %d (%.1f ms, ip=%s)",
            request.method,
            request.path,
            response.status,
            (time.monotonic() - start) * 1000,
            client_ip(request.headers, request.remote_addr),
        )
        return response

    def _route(self, request: Request) -> Response:
        path = request.path.split("?", 1)[0]
        if path == self.config.get("webhook_path", "/webhook"):
            if request.method != "POST":
                return Response(405, {"error": "method not allowed"}, {"Allow": "POST"})
            return self.handle_webhook(request)
        if path == self.config.get("health_path", "/health"):
            return self.handle_health()
        if path == self.config.get("metrics_path", "/metrics"):
            return self.handle_metrics()
        return Response(404, {"error": "not found"})

    # ---- webhook --------------------------------------------------------- #

    def _count(self, platform: str, event_type: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.inc("webhook_requests_total", platform, event_type or "unknown", status)

    def _check_signature(self, platform: Platform, request: Request) -> bool:
        secret = self.config.get("webhook_secret") or ""
        if platform == Platform.GITHUB:
            return verify_github_signature(request.body, header(request.headers, "X-Hub-Signature-256"), secret)
        return verify_gitlab_token(header(request.headers, "X-Gitlab-Token"), secret)

    def handle_webhook(self, request: Request) -> Response:
        start = time.monotonic()
        platform, event_type, delivery_id = detect_platform(request.headers)
        if platform is None:
            logger.warning("Unknown webhook source (missing platform headers)")
            self._count("unknown", "unknown", "error")
            return Response(400, {"error": "unknown webhook source"})
        name = platform.value

        if self.config.get("require_signature", True) and not self._check_signature(platform, request):
            logger.warning("[event=%s] %s signature validation failed", delivery_id, name)
            self._count(name, event_type, "unauthorized")
            return Response(401, {"error": "signature validation failed"})

        rate = self.config.get("rate_limit") or {}
        if self.rate_limiter is not None and rate.get("enabled", True):
            ip = client_ip(request.headers, request.remote_addr)
            if not self.rate_limiter.allow(ip):
                retry_after = self.rate_limiter.retry_after(ip)
                logger.warning("[event=%s] Rate limit exceeded for %s", delivery_id, ip)
                self._count(name, event_type, "rate_limited")
                return Response(429, {"error": "rate limit exceeded"}, {"Retry-After": str(retry_after)})

        try:
            event = parse_event(platform, event_type, request.body, delivery_id, self.pr_actions)
        except SkippedEventError as exc:
            logger.debug("[event=%s] Skipped: %s", delivery_id, exc)
            self._count(name, event_type, "skipped")
            return Response(200, {"status": "skipped", "reason": str(exc), "event_id": delivery_id})
        except EventError as exc:
            logger.info("[event=%s] Rejected %s event: %s", delivery_id, event_type, exc)
            self._count(name, event_type, "invalid")
            return Response(400, {"error": str(exc), "event_id": delivery_id})

        repo = event.repository
        if not repository_allowed(repo.owner, repo.name, self.config.get("allowed_repos") or []):
            logger.warning("[event=%s] Repository %s is not allowed", delivery_id, repo.full_name)
            self._count(name, event_type, "forbidden")
            return Response(403, {"error": "repository not allowed", "event_id": delivery_id})

        if event.kind == EventKind.ISSUE_COMMENT:
            if not is_command_event(event):
                self._count(name, event_type, "not_command")
                return Response(200, {"status": "ignored", "reason": "not a command", "event_id": delivery_id})
        elif not (self.config.get("pr_events") or {}).get("enabled"):
            self._count(name, event_type, "disabled")
            return Response(200, {"status": "skipped", "reason": "pull request events disabled", "event_id": delivery_id})

        logger.info(
            "[event=%s] %s %s on %s#%s by %s",
            delivery_id,
            name,
            event.kind.value,
            repo.full_name,
            event.pull_request.number,
            event.sender,
        )
        response = self._dispatch(Job(event=event), name, event_type)
        if self.metrics is not None:
            self.metrics.observe("webhook_processing_seconds", time.monotonic() - start, name, _command_of(event))
        return response

    def _dispatch(self, job: Job, platform: str, event_type: str) -> Response:
        if self.config.get("async_processing", True) and self.pool is not None:
            if self.pool.submit(job):
                self._count(platform, event_type, "accepted")
                return Response(202, {"status": "accepted", "event_id": job.id})
            if not self.config.get("fallback_to_sync"):
                self._count(platform, event_type, "queue_full")
                return Response(503, {"error": "server busy, please try again later"}, {"Retry-After": "30"})
            logger.warning("[event=%s] Queue full, processing synchronously", job.id)

        if not self.processor.process(job):
            self._count(platform, event_type, "error")
            return Response(500, {"error": "failed to process webhook", "event_id": job.id})
        self._count(platform, event_type, "success")
        return Response(200, {"status": "processed", "event_id": job.id})

    # ---- health and metrics ---------------------------------------------- #

    def handle_health(self) -> Response:
        body: dict[str, Any] = {
            "status": "healthy",
            "version": self.version,
            "uptime_seconds": round(time.monotonic() - self.started_at, 1),
        }
        if self.pool is not None:
            body.update(
                queue_size=self.pool.depth,
                queue_capacity=self.pool.capacity,
                workers=self.pool.worker_count,
                active_workers=self.pool.active,
            )
            if self.pool.closed:
                body["status"] = "shutting down"
                return Response(503, body)
            if self.pool.usage() > QUEUE_WATERMARK:
                body["status"] = "queue nearly full"
                return Response(503, body)
        return Response(200, body)

    def handle_metrics(self) -> Response:
        if self.metrics is None:
            return Response(404, {"error": "metrics disabled"})
        return Response(200, self.metrics.render())


def _command_of(event) -> str:
    if event.comment is None:
        return event.kind.value
    first = event.comment.body.strip().split(maxsplit=1)
    return first[0].lstrip("/") if first else "unknown"
