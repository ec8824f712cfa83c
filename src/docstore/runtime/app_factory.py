"""App factory for the docstore HTTP adapter.

Wires the record stores, rule engine, identity provider and services into a
FastAPI application. Every request is routed as ``/<service>/<tokens...>``;
the service turns it into a call on the core and the adapter serializes
whatever comes back.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from docstore.config import ServerSettings, StoreSpec, load_store_spec
from docstore.errors import RequestError
from docstore.logging import get_logger, setup_logging
from docstore.runtime.context import CallContext
from docstore.runtime.crud_service import CrudService
from docstore.runtime.exception_handlers import register_exception_handlers
from docstore.runtime.identity import IdentityProvider
from docstore.runtime.json_store import JsonStore
from docstore.runtime.record_store import RecordStore
from docstore.runtime.rule_engine import RuleEngine
from docstore.runtime.util_service import UtilService

logger = get_logger("API")

ROUTE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

ServiceHandler = Callable[[str, CallContext, list[str], dict[str, str], Any], Any]


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _to_response(result: Any) -> Response:
    # No body and no content type for "no result" (logout, missing jsonstore node).
    if result is None:
        return Response(status_code=204)
    return JSONResponse(content=result)


class DocstoreBackend:
    """
    Holds the runtime state of one server instance.

    Example:
        backend = DocstoreBackend(load_store_spec("seed.json"))
        app = backend.build()
    """

    def __init__(self, spec: StoreSpec | None = None, settings: ServerSettings | None = None):
        self.spec = spec or StoreSpec()
        self.settings = settings or ServerSettings()

        self.store = RecordStore(self.spec.seed_data)
        self.protected_store = RecordStore(self.spec.protected_data)
        self.rules = RuleEngine(self.spec.rules, lookup=self.store.get_one)
        self.identity = IdentityProvider(
            self.protected_store,
            identity=self.spec.identity,
            secret=self.settings.auth_secret,
        )
        self.crud = CrudService(self.store, self.protected_store, self.rules)
        self.json_store = JsonStore(self.spec.json_data)
        self.util = UtilService(throttle=self.settings.throttle)

        self.services: dict[str, ServiceHandler] = {
            "data": self._data_service,
            "users": self._users_service,
            "jsonstore": self._jsonstore_service,
            "util": self._util_service,
        }

    # =========================================================================
    # Services
    # =========================================================================

    def _data_service(
        self,
        method: str,
        ctx: CallContext,
        tokens: list[str],
        query: dict[str, str],
        body: Any,
    ) -> Any:
        collection = tokens[0] if tokens else None
        return self.crud.dispatch(method, ctx, collection, tokens[1:], query, body)

    def _users_service(
        self,
        method: str,
        ctx: CallContext,
        tokens: list[str],
        query: dict[str, str],
        body: Any,
    ) -> Any:
        action = tokens[0] if tokens else ""
        if method == "GET" and action == "me":
            return self.identity.me(ctx.user)
        if method == "POST" and action == "register":
            return self.identity.register(body)
        if method == "POST" and action == "login":
            return self.identity.login(body)
        if method == "GET" and action == "logout":
            return self.identity.logout(ctx.access_token)
        raise RequestError(f'Action "{method} {action}" is not supported')

    def _jsonstore_service(
        self,
        method: str,
        ctx: CallContext,
        tokens: list[str],
        query: dict[str, str],
        body: Any,
    ) -> Any:
        if method == "GET":
            return self.json_store.get(tokens)
        if method == "POST":
            return self.json_store.post(tokens, body)
        if method == "PUT":
            return self.json_store.put(tokens, body)
        if method == "PATCH":
            return self.json_store.patch(tokens, body)
        if method == "DELETE":
            return self.json_store.delete(tokens)
        raise RequestError(f"Method {method} is not supported")

    def _util_service(
        self,
        method: str,
        ctx: CallContext,
        tokens: list[str],
        query: dict[str, str],
        body: Any,
    ) -> Any:
        if method == "GET":
            return self.util.get(tokens)
        if method == "POST":
            return self.util.post(body)
        raise RequestError(f"Method {method} is not supported")

    # =========================================================================
    # Request handling
    # =========================================================================

    def resolve_context(self, request: Request) -> CallContext:
        """
        Build the caller context from request headers.

        Raises:
            CredentialError: If an X-Authorization token is present but invalid
        """
        token = request.headers.get("X-Authorization")
        user = self.identity.resolve(token)
        return CallContext(
            user=user,
            is_admin="X-Admin" in request.headers,
            access_token=token,
        )

    async def handle(self, request: Request, service: str, path: str = "") -> Response:
        target = request.url.path
        if request.url.query:
            target += "?" + request.url.query
        logger.info("<< %s %s", request.method, target)

        ctx = self.resolve_context(request)
        handler = self.services.get(service)
        if handler is None:
            logger.error("Missing service %s", service)
            raise RequestError(f'Service "{service}" is not supported')

        tokens = [token for token in path.split("/") if token]
        query = dict(request.query_params)
        body = await _read_body(request)

        result = handler(request.method, ctx, tokens, query, body)
        return _to_response(result)

    def build(self) -> FastAPI:
        """Create the FastAPI application."""
        app = FastAPI(title="docstore", docs_url=None, redoc_url=None, openapi_url=None)
        app.state.backend = self

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=[*ROUTE_METHODS, "OPTIONS"],
            allow_headers=["*"],
            max_age=86400,
        )
        register_exception_handlers(app)

        @app.middleware("http")
        async def throttle_responses(
            request: Request, call_next: Callable[[Request], Awaitable[Response]]
        ) -> Response:
            response = await call_next(request)
            await self.util.delay()
            return response

        async def service_root(request: Request, service: str) -> Response:
            return await self.handle(request, service)

        async def service_path(request: Request, service: str, path: str) -> Response:
            return await self.handle(request, service, path)

        app.add_api_route("/{service}", service_root, methods=ROUTE_METHODS)
        app.add_api_route("/{service}/{path:path}", service_path, methods=ROUTE_METHODS)

        return app


def create_app(
    settings: ServerSettings | None = None,
    spec: StoreSpec | None = None,
) -> FastAPI:
    """
    Create a FastAPI application.

    Args:
        settings: Server settings (default: from environment)
        spec: Store contents and rules (default: loaded from settings.spec_path,
            or empty)

    Returns:
        FastAPI application
    """
    settings = settings or ServerSettings.from_env()
    if spec is None and settings.spec_path is not None:
        spec = load_store_spec(settings.spec_path)
    return DocstoreBackend(spec, settings).build()


def run_app(settings: ServerSettings | None = None, spec: StoreSpec | None = None) -> None:
    """
    Run the docstore server with uvicorn.

    Example:
        >>> run_app(ServerSettings(port=3030))
    """
    import uvicorn

    settings = settings or ServerSettings.from_env()
    log_dir = setup_logging(settings.log_dir, level=settings.log_level)
    if log_dir is not None:
        logger.info("Writing logs to %s", log_dir)

    app = create_app(settings, spec)
    logger.info("Server started on http://%s:%d/", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
