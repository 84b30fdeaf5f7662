from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from signalflow.apps.api.errors import (
    http_exception_handler,
    signalflow_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from signalflow.apps.api.response import API_VERSION
from signalflow.apps.api.routes.ai_admin import router as ai_admin_router
from signalflow.apps.api.routes.ai_usage import router as ai_usage_router
from signalflow.apps.api.routes.gate_decisions import router as gate_decisions_router
from signalflow.apps.api.routes.health import router as health_router
from signalflow.apps.api.routes.lineage import router as lineage_router
from signalflow.apps.api.routes.ops import router as ops_router
from signalflow.apps.api.routes.signal_routes import router as signal_routes_router
from signalflow.apps.api.routes.signals import router as signals_router
from signalflow.apps.api.routes.workflow_executions import router as workflow_executions_router
from signalflow.core.config import get_settings
from signalflow.core.errors import SignalflowError
from signalflow.core.logging import configure_logging
from signalflow.persistence.guards import TenantPredicateError
from signalflow.services.telemetry import record_request


def route_class_for_request(request: Request) -> str:
    # Coarse buckets keep telemetry cardinality bounded.
    path = request.url.path
    if path.endswith("/signals/ingest"):
        return "ingest"
    if "/admin/" in path or "/ops/" in path:
        return "admin"
    if request.method in {"GET", "HEAD", "OPTIONS"}:
        return "read"
    return "mutation"


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=settings.app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_request(
            path=request.url.path,
            route_class=route_class_for_request(request),
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(SignalflowError)
    async def _signalflow_exception_handler(request: Request, exc: SignalflowError):
        return await signalflow_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(signals_router, prefix=f"/{API_VERSION}")
    app.include_router(signal_routes_router, prefix=f"/{API_VERSION}")
    app.include_router(workflow_executions_router, prefix=f"/{API_VERSION}")
    app.include_router(lineage_router, prefix=f"/{API_VERSION}")
    app.include_router(gate_decisions_router, prefix=f"/{API_VERSION}")
    app.include_router(ai_usage_router, prefix=f"/{API_VERSION}")
    # Operator-only surfaces for cache management and runtime metrics.
    app.include_router(ai_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")

    # Serve versioned OpenAPI JSON and docs endpoints for v1 consumers.
    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title=f"{settings.app_name} v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Document the tenant/actor/role headers every non-public route expects.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title=settings.app_name,
            version=API_VERSION,
            routes=app.routes,
        )
        schema["servers"] = [{"url": "http://localhost:8000"}]
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["TenantHeader"] = {"type": "apiKey", "in": "header", "name": settings.auth_tenant_header}
        security_schemes["RoleHeader"] = {"type": "apiKey", "in": "header", "name": settings.auth_role_header}
        public_paths = {"/v1/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"TenantHeader": [], "RoleHeader": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
