"""Serve command implementation: the HTTP surface of the staging relay."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
import threading
import time
from collections.abc import Coroutine
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, TypeVar
from urllib.parse import urlparse

import click
from pydantic import ValidationError

from safestage.core.oracle import ChainOracle, SafeRpcOracle
from safestage.core.staging import ProposalStore, StagingService
from safestage.models.staging import StageError, StageReasonCode
from safestage.models.transaction import SignedTransaction
from safestage.utils.config import StagingSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_DISCARD_BYTES = 1024 * 1024

_SAFE_PATH_RE = re.compile(r"^/(?P<chain_id>[^/]+)/(?P<address>[^/]+)/?$")

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
}

_STATUS_BY_REASON: dict[StageReasonCode, int] = {
    StageReasonCode.ORACLE_UNAVAILABLE: 503,
    StageReasonCode.ERROR_INTERNAL: 500,
}


def status_for(error: StageError) -> int:
    """HTTP status for a rejected stage call; validation failures are 400."""
    return _STATUS_BY_REASON.get(error.reason_code, 400)


class StagingGateway:
    """Bridges threaded HTTP handlers onto one asyncio loop owning the store.

    All staging coroutines run on the gateway loop, so per-namespace locks
    and the oracle's HTTP client are never shared across loops.
    """

    def __init__(
        self,
        service: StagingService,
        *,
        max_body_bytes: int = 100 * 1024,
    ) -> None:
        self.service = service
        self.max_body_bytes = max_body_bytes
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="safestage-loop",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        if self._thread.is_alive():
            self.run(self.service.oracle.close())
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
        self._loop.close()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine on the gateway loop and wait for its result."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def list_staged(self, chain_id: str, address: str) -> list[dict[str, Any]]:
        staged = self.run(self.service.list_staged(chain_id, address))
        return [entry.to_wire() for entry in staged]

    def stage_signed(self, chain_id: str, address: str, body: Any) -> list[dict[str, Any]]:
        """Validate a request body and stage it; raises ValidationError or StageError."""
        signed = SignedTransaction.model_validate(body)
        staged = self.run(
            self.service.stage_signed(chain_id, address, signed.txn, signed.sigs)
        )
        return [entry.to_wire() for entry in staged]

    def health(self) -> dict[str, Any]:
        return {"status": "ok", "namespaces": self.service.store.namespace_count()}


class BodyTooLargeError(Exception):
    """Raised when a request body exceeds the configured limit."""


class InvalidContentLengthError(ValueError):
    """Raised when Content-Length is negative."""


def create_handler(gateway: StagingGateway) -> type[BaseHTTPRequestHandler]:
    """Create HTTP request handler with gateway reference."""

    class StagingHandler(BaseHTTPRequestHandler):
        """HTTP handler for the staging relay."""

        _started: float = 0.0

        def _send_json(self, data: Any, status: int = 200) -> None:
            body = json.dumps(data).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            for name, value in _CORS_HEADERS.items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(body)
            self._log_access(status)

        def _send_error(self, message: str, status: int, reason_code: str | None = None) -> None:
            payload: dict[str, Any] = {"error": message}
            if reason_code is not None:
                payload["reason_code"] = reason_code
            self._send_json(payload, status)

        def _log_access(self, status: int) -> None:
            elapsed_ms = (time.perf_counter() - self._started) * 1000
            logger.info("%s %s %d %.1fms", self.command, self.path, status, elapsed_ms)

        def _discard_body(self, content_length: int) -> None:
            # Drained up to the cap so the 413 is not lost to a connection reset.
            remaining = min(content_length, _MAX_DISCARD_BYTES)
            while remaining > 0:
                chunk = self.rfile.read(min(remaining, 64 * 1024))
                if not chunk:
                    break
                remaining -= len(chunk)

        def _read_json(self) -> Any:
            content_length = int(self.headers.get("Content-Length", 0) or 0)
            if content_length < 0:
                raise InvalidContentLengthError(content_length)
            if content_length > gateway.max_body_bytes:
                self._discard_body(content_length)
                raise BodyTooLargeError(content_length)
            if content_length == 0:
                return {}
            body = self.rfile.read(content_length)
            return json.loads(body.decode())

        def _match_safe_path(self) -> re.Match[str] | None:
            return _SAFE_PATH_RE.match(urlparse(self.path).path)

        def _call(self, fn: Any, *args: Any) -> None:
            try:
                self._send_json(fn(*args))
            except StageError as exc:
                self._send_json(exc.to_payload(), status_for(exc))
            except ValidationError as exc:
                self._send_error(f"invalid request body: {exc.error_count()} error(s)", 400)
            except Exception:
                logger.exception("caught failure in %s %s", self.command, self.path)
                self._send_error(
                    "unexpected error, please check server logs",
                    500,
                    StageReasonCode.ERROR_INTERNAL.value,
                )

        def do_OPTIONS(self) -> None:
            self._started = time.perf_counter()
            self.send_response(204)
            for name, value in _CORS_HEADERS.items():
                self.send_header(name, value)
            self.send_header("Content-Length", "0")
            self.end_headers()
            self._log_access(204)

        def do_GET(self) -> None:
            self._started = time.perf_counter()
            if urlparse(self.path).path == "/health":
                self._send_json(gateway.health())
                return

            match = self._match_safe_path()
            if match is None:
                self._send_error("Not found", 404)
                return
            self._call(gateway.list_staged, match["chain_id"], match["address"])

        def do_POST(self) -> None:
            self._started = time.perf_counter()
            match = self._match_safe_path()
            if match is None:
                self._send_error("Not found", 404)
                return

            try:
                body = self._read_json()
            except BodyTooLargeError:
                self.close_connection = True
                self._send_error("request body too large", 413)
                return
            except InvalidContentLengthError:
                self.close_connection = True
                self._send_error("invalid Content-Length", 400)
                return
            except ValueError:
                self._send_error("request body is not valid JSON", 400)
                return

            self._call(gateway.stage_signed, match["chain_id"], match["address"], body)

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("%s - %s", self.address_string(), format % args)

    return StagingHandler


def build_oracle(settings: StagingSettings) -> SafeRpcOracle:
    return SafeRpcOracle(
        use_default_rpcs=settings.use_default_rpcs,
        timeout=settings.oracle_timeout,
    )


def build_gateway(settings: StagingSettings, oracle: ChainOracle) -> StagingGateway:
    """Wire store and service around ``oracle`` from settings."""
    store = ProposalStore(
        max_staged=settings.max_staged,
        max_signatures=settings.max_signatures,
    )
    service = StagingService(oracle, store, oracle_timeout=settings.oracle_timeout)
    return StagingGateway(service, max_body_bytes=settings.max_body_bytes)


def run_serve(settings: StagingSettings) -> None:
    """Run the serve command."""
    oracle = build_oracle(settings)
    gateway = build_gateway(settings, oracle)
    gateway.start()

    try:
        gateway.run(oracle.register_rpc_urls(settings.rpc_urls))
    except StageError as exc:
        gateway.stop()
        click.echo(f"Error initializing RPC endpoints: {exc.message}", err=True)
        sys.exit(1)

    handler = create_handler(gateway)
    server = ThreadingHTTPServer((settings.host, settings.port), handler)

    click.echo("\nSafe staging relay started")
    click.echo(f"  URL: http://localhost:{server.server_address[1]}")
    networks = " ".join(str(chain_id) for chain_id in sorted(oracle.endpoints))
    click.echo(f"  Registered networks: {networks or '(none)'}")
    if settings.use_default_rpcs:
        click.echo("  Default public RPCs: enabled")
    click.echo(f"  Limits: {settings.max_staged} staged / {settings.max_signatures} signatures")

    click.echo("\nEndpoints:")
    click.echo("  GET  /health                   - Health check")
    click.echo("  GET  /<chainId>/<safeAddress>  - List staged transactions")
    click.echo("  POST /<chainId>/<safeAddress>  - Stage a signed transaction")
    click.echo("\nPress Ctrl+C to stop\n")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    finally:
        server.server_close()
        gateway.stop()
