"""FastAPI application that exposes the user management endpoints."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import ServiceConfig, load_service_config
from .database import Database, StorageError
from .models import User, UserPatch
from .notifications import Notifier, build_notifier
from .users import (
    DuplicateEmailError,
    InvalidInputError,
    UserManager,
    UserNotFoundError,
    UserServiceError,
)

logger = logging.getLogger("userservice.api")


class Link(BaseModel):
    rel: str
    href: str
    method: str = "GET"


class CreateUserRequest(BaseModel):
    name: str
    email: str
    age: Optional[int] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None

    def to_patch(self) -> UserPatch:
        return UserPatch(name=self.name, email=self.email, age=self.age)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    age: Optional[int]
    created_at: datetime
    updated_at: Optional[datetime] = None
    links: List[Link] = Field(default_factory=list)


class UserCollectionResponse(BaseModel):
    users: List[UserResponse]
    count: int
    links: List[Link] = Field(default_factory=list)


def user_links(request: Request, user_id: int) -> List[Link]:
    user_url = str(request.url_for("get_user", user_id=user_id))
    return [
        Link(rel="self", href=user_url),
        Link(rel="update", href=user_url, method="PUT"),
        Link(rel="delete", href=user_url, method="DELETE"),
        Link(rel="all-users", href=str(request.url_for("list_users"))),
    ]


def user_to_response(user: User, request: Request) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        age=user.age,
        created_at=user.created_at,
        updated_at=user.updated_at,
        links=user_links(request, user.id),
    )


def _error_response(status_code: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidInputError)
    async def handle_invalid_input(_: Request, exc: InvalidInputError):
        return _error_response(status.HTTP_400_BAD_REQUEST, exc, exc.code)

    @app.exception_handler(DuplicateEmailError)
    async def handle_duplicate_email(_: Request, exc: DuplicateEmailError):
        return _error_response(status.HTTP_400_BAD_REQUEST, exc, exc.code)

    @app.exception_handler(UserNotFoundError)
    async def handle_not_found(_: Request, exc: UserNotFoundError):
        return _error_response(status.HTTP_404_NOT_FOUND, exc, exc.code)

    @app.exception_handler(UserServiceError)
    async def handle_service_error(_: Request, exc: UserServiceError):
        return _error_response(status.HTTP_400_BAD_REQUEST, exc, exc.code)

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error("Storage failure on %s: %s", request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "The user store is unavailable", "code": "STORAGE_FAILURE"},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        messages = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "; ".join(messages) or "Invalid request", "code": InvalidInputError.code},
        )


def create_app(
    *,
    database: Database | None = None,
    notifier: Notifier | None = None,
    config: ServiceConfig | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application around an injected database.

    The caller owns the database lifecycle when one is supplied; otherwise the
    application opens its own and closes it on shutdown.
    """

    owns_database = database is None
    owns_notifier = notifier is None
    if database is None or notifier is None:
        config = config or load_service_config()
        if database is None:
            database = Database(config.database_path)
        if notifier is None:
            notifier = build_notifier(config)
    database.initialize()

    db = database
    sink = notifier
    manager = UserManager(db, sink)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if owns_notifier:
                sink.close()
            if owns_database:
                db.close()

    app = FastAPI(
        title="User Management API",
        description="CRUD service for user records with unique email addresses",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = db
    app.state.manager = manager
    app.state.notifier = sink

    def get_manager() -> UserManager:
        return manager

    router = APIRouter(prefix="/api/users", tags=["users"])

    @router.post(
        "",
        name="create_user",
        status_code=status.HTTP_201_CREATED,
        response_model=UserResponse,
    )
    def create_user(
        payload: CreateUserRequest,
        request: Request,
        users: UserManager = Depends(get_manager),
    ) -> UserResponse:
        user = users.create(payload.name, payload.email, payload.age)
        return user_to_response(user, request)

    @router.get("", name="list_users", response_model=UserCollectionResponse)
    def list_users(request: Request, users: UserManager = Depends(get_manager)) -> UserCollectionResponse:
        records = users.list_all()
        collection_url = str(request.url_for("list_users"))
        return UserCollectionResponse(
            users=[user_to_response(user, request) for user in records],
            count=len(records),
            links=[
                Link(rel="self", href=collection_url),
                Link(rel="create", href=str(request.url_for("create_user")), method="POST"),
            ],
        )

    @router.get("/search", name="search_users", response_model=List[UserResponse])
    def search_users(
        request: Request,
        name: Optional[str] = Query(default=None),
        min_age: Optional[int] = Query(default=None),
        max_age: Optional[int] = Query(default=None),
        users: UserManager = Depends(get_manager),
    ) -> List[UserResponse]:
        if (min_age is None) != (max_age is None):
            raise InvalidInputError("min_age and max_age must be provided together")

        if min_age is not None and max_age is not None:
            records = users.search_by_age_range(min_age, max_age)
            if name is not None:
                needle = name.strip().lower()
                records = [user for user in records if needle in user.name.lower()]
        else:
            records = users.search_by_name(name or "")
        return [user_to_response(user, request) for user in records]

    @router.get("/email/{email}", name="get_user_by_email", response_model=UserResponse)
    def get_user_by_email(
        email: str,
        request: Request,
        users: UserManager = Depends(get_manager),
    ) -> UserResponse:
        user = users.get_by_email(email)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user_to_response(user, request)

    @router.get("/{user_id}", name="get_user", response_model=UserResponse)
    def get_user(
        user_id: int,
        request: Request,
        users: UserManager = Depends(get_manager),
    ) -> UserResponse:
        user = users.get_by_id(user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user_to_response(user, request)

    @router.put("/{user_id}", name="update_user", response_model=UserResponse)
    @router.patch("/{user_id}", name="patch_user", response_model=UserResponse)
    def update_user(
        user_id: int,
        payload: UpdateUserRequest,
        request: Request,
        users: UserManager = Depends(get_manager),
    ) -> UserResponse:
        user = users.update(user_id, payload.to_patch())
        return user_to_response(user, request)

    @router.delete("/{user_id}", name="delete_user", status_code=status.HTTP_204_NO_CONTENT)
    def delete_user(user_id: int, users: UserManager = Depends(get_manager)) -> Response:
        if not users.delete(user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    app.include_router(router)
    register_error_handlers(app)

    return app


__all__ = ["create_app", "register_error_handlers", "user_to_response"]
