"""HTTP API exposing user records and their change notifications."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional

import anyio
from fastapi import FastAPI, Query, Request, Response, WebSocket, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from . import __version__
from .broadcaster import Broadcaster
from .channels import stream_events
from .config import Settings, load_settings
from .database import Database
from .errors import ConflictError, NotFoundError, StoreError, ValidationError
from .models import Page, User
from .service import RecordService

logger = logging.getLogger("crudhub.api")

API_TITLE = "crudhub"
API_VERSION = __version__


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateUserRequest(BaseModel):
    # Constraints are checked by crudhub.lifecycle so every violation is
    # reported together; only JSON types are enforced here.
    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None
    phone: Optional[str] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None
    phone: Optional[str] = None


class UserResponse(_CamelModel):
    id: int
    name: str
    email: str
    age: int
    phone: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            age=user.age,
            phone=user.phone,
            created_at=user.created_at,
            updated_at=user.updated_at,
            is_active=user.is_active,
        )


class UserPageResponse(_CamelModel):
    items: List[UserResponse]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_previous: bool
    has_next: bool

    @classmethod
    def from_page(cls, page: Page) -> "UserPageResponse":
        return cls(
            items=[UserResponse.from_user(user) for user in page.items],
            page=page.page,
            page_size=page.page_size,
            total_count=page.total_count,
            total_pages=page.total_pages,
            has_previous=page.has_previous,
            has_next=page.has_next,
        )


class SearchResponse(_CamelModel):
    query: str
    count: int
    items: List[UserResponse]


class ResetResponse(_CamelModel):
    message: str
    count: int


class StatsResponse(_CamelModel):
    total_users: int
    active_users: int
    last_user_id: Optional[int]
    last_user_created_at: Optional[datetime]
    database_path: str
    database_provider: str


def _error_body(detail: str, errors: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": detail}
    if errors is not None:
        body["errors"] = errors
    return body


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _handle_validation(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(str(exc), exc.as_list()),
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_malformed(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = []
        for error in exc.errors():
            location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
            errors.append({"field": ".".join(location) or "body", "message": str(error.get("msg", ""))})
        logger.warning("Malformed %s %s request", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("Malformed request", errors),
        )

    @app.exception_handler(ConflictError)
    async def _handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_body(str(exc)))

    @app.exception_handler(NotFoundError)
    async def _handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_body(str(exc)))

    @app.exception_handler(StoreError)
    async def _handle_store(request: Request, exc: StoreError) -> JSONResponse:
        logger.error(
            "Store failure while handling %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("The record store is unavailable"),
        )


def register_routes(app: FastAPI, service: RecordService) -> None:
    """Expose the record endpoints on the provided FastAPI application."""

    @app.get("/")
    async def root() -> Dict[str, object]:
        return {
            "message": "crudhub user record service",
            "version": API_VERSION,
            "listeners": service.broadcaster.listener_count(),
            "endpoints": [
                "GET /health",
                "GET /records",
                "GET /records/search?q=&limit=",
                "GET /records/stats",
                "GET /records/{id}",
                "POST /records",
                "PUT /records/{id}",
                "DELETE /records/{id}",
                "POST /records/reset",
                "WS /events",
            ],
        }

    @app.get("/health")
    async def healthcheck() -> JSONResponse:
        reachable = await anyio.to_thread.run_sync(service.is_healthy)
        if not reachable:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unavailable", "database": "unreachable"},
            )
        return JSONResponse(content={"status": "ok", "database": "reachable"})

    @app.get("/records", response_model=UserPageResponse)
    async def list_records(
        search: Optional[str] = Query(default=None),
        page: Optional[int] = Query(default=None),
        page_size: Optional[int] = Query(default=None, alias="pageSize"),
    ) -> UserPageResponse:
        result = await anyio.to_thread.run_sync(
            partial(service.list, search=search, page=page, page_size=page_size)
        )
        return UserPageResponse.from_page(result)

    @app.get("/records/search", response_model=SearchResponse)
    async def search_records(
        q: Optional[str] = Query(default=None),
        limit: Optional[int] = Query(default=None),
    ) -> SearchResponse:
        users = await anyio.to_thread.run_sync(partial(service.search, q, limit=limit))
        return SearchResponse(
            query=(q or "").strip(),
            count=len(users),
            items=[UserResponse.from_user(user) for user in users],
        )

    @app.get("/records/stats", response_model=StatsResponse)
    async def record_stats() -> StatsResponse:
        stats = await anyio.to_thread.run_sync(service.stats)
        return StatsResponse(
            total_users=stats.total_users,
            active_users=stats.active_users,
            last_user_id=stats.last_user_id,
            last_user_created_at=stats.last_user_created_at,
            database_path=stats.database_path,
            database_provider=stats.database_provider,
        )

    @app.post("/records/reset", response_model=ResetResponse)
    async def reset_records() -> ResetResponse:
        users = await anyio.to_thread.run_sync(service.reset)
        return ResetResponse(
            message="Database reset to seed data",
            count=len(users),
        )

    @app.get("/records/{user_id}", response_model=UserResponse)
    async def get_record(user_id: int) -> UserResponse:
        user = await anyio.to_thread.run_sync(service.get, user_id)
        return UserResponse.from_user(user)

    @app.post(
        "/records",
        status_code=status.HTTP_201_CREATED,
        response_model=UserResponse,
    )
    async def create_record(request: CreateUserRequest, response: Response) -> UserResponse:
        user = await anyio.to_thread.run_sync(
            partial(
                service.create,
                name=request.name,
                email=request.email,
                age=request.age,
                phone=request.phone,
            )
        )
        response.headers["Location"] = f"/records/{user.id}"
        return UserResponse.from_user(user)

    @app.put("/records/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def update_record(user_id: int, request: UpdateUserRequest) -> Response:
        changes = request.model_dump(exclude_unset=True)
        await anyio.to_thread.run_sync(service.update, user_id, changes)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.delete("/records/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_record(user_id: int) -> Response:
        await anyio.to_thread.run_sync(service.delete, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.websocket("/events")
    async def record_events(websocket: WebSocket) -> None:
        await stream_events(websocket, service.broadcaster)


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    broadcaster: Broadcaster | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the record service."""

    app_settings = settings or load_settings()
    db = database or Database(app_settings.database_path)
    db.initialize()

    app_broadcaster = broadcaster or Broadcaster(queue_size=app_settings.listener_queue_size)
    service = RecordService(
        db,
        app_broadcaster,
        default_page_size=app_settings.default_page_size,
        max_page_size=app_settings.max_page_size,
        max_search_limit=app_settings.max_search_limit,
    )
    if app_settings.seed_on_empty:
        service.seed_if_empty()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        app_broadcaster.close()

    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        description="User records with real-time change notifications.",
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.database = db
    app.state.broadcaster = app_broadcaster
    app.state.service = service

    _register_error_handlers(app)
    register_routes(app, service)
    return app


__all__ = ["create_app", "register_routes"]
