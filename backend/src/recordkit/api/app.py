"""FastAPI application factory."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from recordkit.api.requests import DEFAULT_PER_PAGE, RecordsApi
from recordkit.auth import AuthMiddleware, JWTService, get_auth
from recordkit.config import Settings
from recordkit.core.outcomes import Outcome
from recordkit.core.request import RequestInfo
from recordkit.hooks.registry import HookRegistry
from recordkit.metadata.loader import CollectionLoader
from recordkit.persistence import create_adapter
from recordkit.realtime import RealtimeBroker, create_realtime_router
from recordkit.records.service import RecordService
from recordkit.rules.compiler import RuleCompiler
from recordkit.rules.enforcement import RuleEnforcer

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "The request timed out."


def create_app(settings: Settings | None = None, hooks: HookRegistry | None = None) -> FastAPI:
    """Build the API application.

    Args:
        settings: Runtime settings (read from the environment when omitted)
        hooks: An unfrozen registry with application handlers bound. The
            realtime broker binds its own handlers, then the registry is
            frozen for the lifetime of the app.

    Returns:
        A FastAPI app. Services live on ``app.state``.
    """
    settings = settings or Settings.from_env()
    hooks = hooks or HookRegistry()

    loader = CollectionLoader(settings.metadata_path)
    loader.load_all()

    storage = create_adapter(settings.database)
    storage.connect()

    records = RecordService(loader, storage, hooks)
    records.initialize_schema()

    compiler = RuleCompiler(loader)
    collections = [loader.get_collection(name) for name in loader.list_collections()]
    issues = compiler.check_all([c for c in collections if c is not None])
    for issue in issues:
        logger.warning("Invalid rule %s", issue)
    if issues:
        logger.warning(
            "%d invalid rule(s). Run 'recordkit collections validate' for details.", len(issues)
        )

    enforcer = RuleEnforcer(compiler, lookup=records)
    broker = RealtimeBroker(loader, enforcer, hooks)
    broker.bind()
    hooks.freeze()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        broker.shutdown()
        storage.close()

    app = FastAPI(title="recordkit API", lifespan=lifespan)
    app.state.settings = settings
    app.state.collections = loader
    app.state.storage = storage
    app.state.records = records
    app.state.enforcer = enforcer
    app.state.hooks = hooks
    app.state.broker = broker
    app.state.jwt = JWTService(settings.secret_key)
    app.state.api = RecordsApi(loader, records, enforcer, hooks)

    # Starlette runs the last added middleware first
    app.add_middleware(AuthMiddleware, jwt_service=app.state.jwt, resolver=records.find_by_id)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_realtime_router(get_broker=lambda: broker))
    _register_routes(app)
    return app


# --- Helpers ---


async def _request_info(http_request: Request, with_body: bool) -> RequestInfo | Outcome:
    """Build the rule context of an HTTP request."""
    body: Any = {}
    if with_body and await http_request.body():
        try:
            body = await http_request.json()
        except ValueError:
            return Outcome.input_rejected("Invalid JSON body.")
        if not isinstance(body, dict):
            return Outcome.input_rejected("The request body must be a JSON object.")

    return RequestInfo(
        auth=get_auth(http_request),
        body=body,
        query=dict(http_request.query_params),
        headers=dict(http_request.headers),
        method=http_request.method,
    )


def _to_response(outcome: Outcome) -> Response:
    if not outcome.ok:
        return JSONResponse(outcome.to_error_dict(), status_code=outcome.status_code)
    if outcome.status == 204:
        return Response(status_code=204)
    return JSONResponse(outcome.value, status_code=outcome.status_code)


async def _run(http_request: Request, operation: Awaitable[Outcome]) -> Response:
    """Await an operation under the configured timeout."""
    timeout = http_request.app.state.settings.request_timeout
    try:
        outcome = await asyncio.wait_for(operation, timeout)
    except asyncio.TimeoutError:
        logger.warning("%s %s timed out", http_request.method, http_request.url.path)
        return JSONResponse(
            {"status": 504, "message": TIMEOUT_MESSAGE, "data": {}}, status_code=504
        )
    return _to_response(outcome)


def _int_param(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


# --- Record Endpoints ---


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Liveness probe."""
        return {"status": 200, "message": "API is healthy.", "data": {}}

    @app.get("/api/collections/{collection}/records")
    async def list_records(collection: str, http_request: Request) -> Response:
        """List records visible to the caller."""
        info = await _request_info(http_request, with_body=False)
        params = http_request.query_params
        api: RecordsApi = http_request.app.state.api
        return await _run(http_request, api.list(
            collection,
            info,
            page=_int_param(params.get("page"), 1),
            per_page=_int_param(params.get("perPage"), DEFAULT_PER_PAGE),
            sort=params.get("sort"),
            filter=params.get("filter"),
        ))

    @app.get("/api/collections/{collection}/records/{id}")
    async def view_record(collection: str, id: str, http_request: Request) -> Response:
        """Get a single record."""
        info = await _request_info(http_request, with_body=False)
        api: RecordsApi = http_request.app.state.api
        return await _run(http_request, api.view(collection, id, info))

    @app.post("/api/collections/{collection}/records")
    async def create_record(collection: str, http_request: Request) -> Response:
        """Create a record."""
        info = await _request_info(http_request, with_body=True)
        if isinstance(info, Outcome):
            return _to_response(info)
        api: RecordsApi = http_request.app.state.api
        return await _run(http_request, api.create(collection, info))

    @app.patch("/api/collections/{collection}/records/{id}")
    async def update_record(collection: str, id: str, http_request: Request) -> Response:
        """Update a record."""
        info = await _request_info(http_request, with_body=True)
        if isinstance(info, Outcome):
            return _to_response(info)
        api: RecordsApi = http_request.app.state.api
        return await _run(http_request, api.update(collection, id, info))

    @app.delete("/api/collections/{collection}/records/{id}")
    async def delete_record(collection: str, id: str, http_request: Request) -> Response:
        """Delete a record."""
        info = await _request_info(http_request, with_body=False)
        api: RecordsApi = http_request.app.state.api
        return await _run(http_request, api.delete(collection, id, info))
