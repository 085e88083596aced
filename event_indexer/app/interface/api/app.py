from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from event_indexer.app.domain.ports.out import EventStore
from event_indexer.app.interface.api.routes import error_response, router


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(str(exc.detail), status_code=exc.status_code)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return error_response(f"Invalid request: {problems}", status_code=400)


def create_app(store: EventStore) -> FastAPI:
    """
    Read-only query API over an initialized event store.

    Every response is a ``{"success": ...}`` envelope, including 404s and
    invalid query parameters.
    """
    app = FastAPI(title="Event Indexer API")
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.include_router(router)
    return app
