"""HTTP and WebSocket relay service built on FastAPI.

Exposes event submission, filtered queries, threads, agent profiles and
relay statistics over HTTP, and live fan-out over a WebSocket at ``/``.

The HTTP server runs as a background ``asyncio.Task`` alongside the
standard ``run_forever()`` cycle. Each ``run()`` cycle logs submission
and request statistics and updates Prometheus metrics.

Endpoints:
    ``POST /events``: submit a signed event.
    ``GET /events``: feed with ``author``, ``since``, ``until``, ``kind``,
        ``limit`` and ``enrich`` parameters.
    ``GET /events/{id}``: single event.
    ``GET /events/{id}/thread``: event plus its replies.
    ``GET /agents/{pubkey}``: latest profile, stats and recent posts.
    ``GET /stats``, ``GET /api``, ``GET /health``.
    ``WS /``: live ``{"type": "event", "event": {...}}`` frames.

See Also:
    [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]:
        Handles ``POST /events``.
    [QueryService][starpulse.services.relay.queries.QueryService]: Handles
        every read endpoint.
    [Broadcaster][starpulse.core.broadcaster.Broadcaster]: Feeds the
        WebSocket channels.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any, ClassVar

import uvicorn
from fastapi import FastAPI, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from starpulse.core.base_service import BaseService
from starpulse.core.broadcaster import Broadcaster, Subscriber
from starpulse.core.exceptions import ClientValidationError, DatabaseError, RejectReason
from starpulse.models import EventFilter
from starpulse.models.constants import DEFAULT_QUERY_LIMIT, ServiceName

from .configs import RelayConfig
from .ingestion import INTERNAL_ERROR, IngestionPipeline
from .queries import QueryService


if TYPE_CHECKING:
    from types import TracebackType

    from starpulse.core.event_store import EventStore

_HTTP_ERROR_THRESHOLD = 400
_TRUE_VALUES = frozenset({"1", "true", "yes"})
_FALSE_VALUES = frozenset({"0", "false", "no"})

ENDPOINTS: dict[str, str] = {
    "POST /events": "Submit a signed event",
    "GET /events": "Query events (author, since, until, kind, limit, enrich)",
    "GET /events/:id": "Get a single event",
    "GET /events/:id/thread": "Get an event and its replies",
    "GET /agents/:pubkey": "Get an agent profile and stats",
    "GET /stats": "Relay statistics",
    "GET /api": "Endpoint listing",
    "GET /health": "Liveness check",
    "WS /": "Live event stream",
}


def _relay_version() -> str:
    from starpulse import __version__  # noqa: PLC0415

    return __version__


def _error(reason: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": reason}, status_code=status_code)


def _int_param(params: Any, name: str) -> int | None:
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ClientValidationError(
            RejectReason.INVALID_QUERY, f"{name} must be an integer, got {raw!r}"
        ) from e


def _bool_param(params: Any, name: str, default: bool) -> bool:
    raw = params.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ClientValidationError(RejectReason.INVALID_QUERY, f"{name} must be a boolean")


def parse_event_filter(params: Any) -> EventFilter:
    """Build an [EventFilter][starpulse.models.filter.EventFilter] from query parameters.

    Raises:
        ClientValidationError: ``invalid_query`` for non-integer numbers or
            out-of-range values.
    """
    limit = _int_param(params, "limit")
    try:
        return EventFilter(
            author=params.get("author") or None,
            since=_int_param(params, "since"),
            until=_int_param(params, "until"),
            kind=_int_param(params, "kind"),
            limit=DEFAULT_QUERY_LIMIT if limit is None else limit,
        )
    except (TypeError, ValueError) as e:
        raise ClientValidationError(RejectReason.INVALID_QUERY, str(e)) from e


class Relay(BaseService[RelayConfig]):
    """Event relay service.

    The store and broadcaster are injected so that tests and embedding
    applications can share or replace them; a broadcaster is created from
    the config when none is given.

    Lifecycle:
        1. ``__aenter__``: build the FastAPI app, start uvicorn.
        2. ``run()``: log statistics and update Prometheus metrics.
        3. ``__aexit__``: close live channels, cancel the HTTP server task.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.RELAY
    CONFIG_CLASS: ClassVar[type[RelayConfig]] = RelayConfig

    def __init__(
        self,
        store: EventStore,
        config: RelayConfig | None = None,
        broadcaster: Broadcaster | None = None,
    ) -> None:
        super().__init__(store, config)
        self._broadcaster = broadcaster or Broadcaster(
            max_pending=self._config.max_pending_messages
        )
        self._pipeline = IngestionPipeline(store, self._broadcaster)
        self._queries = QueryService(store, self._broadcaster)
        self._server_task: asyncio.Task[None] | None = None
        self._requests_total = 0
        self._requests_failed = 0

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    @property
    def pipeline(self) -> IngestionPipeline:
        return self._pipeline

    async def __aenter__(self) -> Relay:
        await super().__aenter__()
        app = self._build_app()
        self._server_task = asyncio.create_task(self._run_server(app))
        self._logger.info("http_server_started", host=self._config.host, port=self._config.port)
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._broadcaster.close()
        if self._server_task is not None:
            self._server_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._server_task
            self._server_task = None
        self._logger.info("http_server_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    async def run(self) -> None:
        """Log per-cycle statistics and update Prometheus metrics.

        Raises:
            RuntimeError: If the HTTP server task has stopped.
        """
        if self._server_task is not None and self._server_task.done():
            exc = self._server_task.exception() if not self._server_task.cancelled() else None
            self._logger.error("http_server_crashed", error=str(exc) if exc else "cancelled")
            raise RuntimeError("HTTP server task has stopped unexpectedly") from exc

        stats = self._pipeline.reset_stats()
        requests_total, self._requests_total = self._requests_total, 0
        requests_failed, self._requests_failed = self._requests_failed, 0
        subscribers = self._broadcaster.subscriber_count

        self._logger.info(
            "cycle_stats",
            events_accepted=stats.accepted,
            events_rejected=sum(stats.rejected.values()),
            internal_errors=stats.internal_errors,
            requests_total=requests_total,
            requests_failed=requests_failed,
            subscribers=subscribers,
        )
        self.inc_counter("events_accepted", stats.accepted)
        for reason, count in stats.rejected.items():
            self.inc_counter(f"events_rejected_{reason}", count)
        self.inc_counter("internal_errors", stats.internal_errors)
        self.inc_counter("requests_total", requests_total)
        self.inc_counter("requests_failed", requests_failed)
        self.set_gauge("live_subscribers", subscribers)
        self.set_gauge("dropped_messages", self._broadcaster.dropped_total)

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def _build_app(self) -> FastAPI:  # noqa: C901
        """Construct the FastAPI application with all relay routes."""
        app = FastAPI(title=f"{self._config.relay_name} Relay", version=_relay_version())

        if self._config.cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self._config.cors_origins,
                allow_methods=["GET", "POST"],
                allow_headers=["*"],
            )

        @app.middleware("http")
        async def log_requests(request: Request, call_next: Any) -> Response:
            start = time.monotonic()
            try:
                response: Response = await call_next(request)
            except Exception as exc:  # Intentionally broad: HTTP request error boundary
                self._logger.error(
                    "unhandled_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    path=request.url.path,
                )
                response = _error(INTERNAL_ERROR, 500)
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            self._requests_total += 1
            if response.status_code >= _HTTP_ERROR_THRESHOLD:
                self._requests_failed += 1
                self._logger.warning(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                )
            else:
                self._logger.debug(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                )
            return response

        @app.exception_handler(ClientValidationError)
        async def client_error(_request: Request, exc: ClientValidationError) -> JSONResponse:
            return _error(str(exc.reason), 400)

        @app.exception_handler(DatabaseError)
        async def database_error(request: Request, exc: DatabaseError) -> JSONResponse:
            self._logger.error(
                "database_error",
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
            )
            return _error(INTERNAL_ERROR, 500)

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        @app.get("/api")
        async def describe() -> dict[str, Any]:
            return {
                "name": f"{self._config.relay_name} Relay",
                "version": _relay_version(),
                "description": self._config.description,
                "endpoints": ENDPOINTS,
            }

        @app.get("/stats")
        async def stats() -> dict[str, Any]:
            totals = await self._queries.totals()
            return {
                "success": True,
                "relay": self._config.relay_name,
                "version": _relay_version(),
                "events": totals.events,
                "agents": totals.agents,
                "subscribers": totals.subscribers,
            }

        @app.post("/events")
        async def submit_event(request: Request) -> JSONResponse:
            result = await self._pipeline.submit_json(await request.body())
            return JSONResponse(result.to_dict(), status_code=result.status_code)

        @app.get("/events")
        async def list_events(request: Request) -> dict[str, Any]:
            params = request.query_params
            event_filter = parse_event_filter(params)
            enrich = _bool_param(params, "enrich", self._config.enrich_by_default)
            page = await self._queries.feed(event_filter, enrich=enrich)
            return page.to_dict()

        @app.get("/events/{event_id}")
        async def get_event(event_id: str) -> JSONResponse:
            event = await self._queries.get_event(event_id)
            if event is None:
                return _error("not_found", 404)
            return JSONResponse({"success": True, "event": event.to_dict()})

        @app.get("/events/{event_id}/thread")
        async def get_thread(event_id: str) -> JSONResponse:
            thread = await self._queries.thread(event_id)
            if thread is None:
                return _error("not_found", 404)
            return JSONResponse(thread.to_dict())

        @app.get("/agents/{pubkey}")
        async def get_agent(pubkey: str) -> dict[str, Any]:
            agent = await self._queries.agent(pubkey)
            return {"success": True, **agent.to_dict()}

        @app.websocket("/")
        async def live(websocket: WebSocket) -> None:
            await self._serve_subscriber(websocket)

        return app

    # -------------------------------------------------------------------------
    # Live Channels
    # -------------------------------------------------------------------------

    async def _serve_subscriber(self, websocket: WebSocket) -> None:
        """Attach *websocket* to the broadcaster until either side closes.

        No backlog is sent; the channel only sees events accepted after it
        joined. Inbound messages are read and discarded so that a client
        close is noticed.
        """
        await websocket.accept()
        subscriber = self._broadcaster.subscribe()
        self._logger.info(
            "subscriber_connected",
            subscriber=subscriber.id,
            total=self._broadcaster.subscriber_count,
        )
        forward = asyncio.create_task(self._forward(websocket, subscriber))
        try:
            while subscriber.is_open:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            self._broadcaster.unsubscribe(subscriber)
            forward.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await forward
            self._logger.info(
                "subscriber_disconnected",
                subscriber=subscriber.id,
                dropped=subscriber.dropped,
                total=self._broadcaster.subscriber_count,
            )

    async def _forward(self, websocket: WebSocket, subscriber: Subscriber) -> None:
        try:
            async for message in subscriber:
                await websocket.send_text(message)
        except Exception as e:  # Intentionally broad: a failing channel must not affect others
            self._logger.warning(
                "subscriber_send_failed",
                subscriber=subscriber.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._broadcaster.unsubscribe(subscriber)

    async def _run_server(self, app: FastAPI) -> None:
        """Run uvicorn as an asyncio server."""
        config = uvicorn.Config(
            app,
            host=self._config.host,
            port=self._config.port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()
