"""HTTP API for requesting, listing and retiring pooled PostgreSQL instances."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .allocation import AllocationService
from .config import BrokerSettings, load_settings
from .errors import DuplicateInstance, PoolExhausted, QuotaExceeded, StorageError
from .models import AssignedInstance, PoolInstance
from .pool import InstancePool
from .registry import UserRegistry
from .security import TokenAuth
from .seed import DEFAULT_SEED, load_seed_file
from .storage import open_file_stores

logger = logging.getLogger("pgbroker.service")

NOT_FOUND_MESSAGE = "Instance not found or does not belong to user"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InstanceView(_CamelModel):
    id: str
    instance_name: str = Field(..., alias="instanceName")
    host: str
    admin_user: str = Field(..., alias="adminUser")
    password: str
    region: str
    created_at: datetime = Field(..., alias="createdAt")


class InstanceListResponse(_CamelModel):
    instances: List[InstanceView]
    count: int
    max_instances: int = Field(..., alias="maxInstances")
    can_create_more: bool = Field(..., alias="canCreateMore")


class InstanceCreateResponse(_CamelModel):
    instance: InstanceView
    message: str
    connection_string: str = Field(..., alias="connectionString")


class InstanceDetailResponse(_CamelModel):
    instance: InstanceView
    connection_string: str = Field(..., alias="connectionString")


class InstanceDeleteResponse(_CamelModel):
    message: str
    instance_id: str = Field(..., alias="instanceId")


class PoolInstanceView(_CamelModel):
    id: str
    instance_name: str = Field(..., alias="instanceName")
    admin_username: str = Field(..., alias="adminUsername")
    admin_password: str = Field(..., alias="adminPassword")
    region: str
    host: str


class PoolInstanceSummary(_CamelModel):
    id: str
    instance_name: str = Field(..., alias="instanceName")
    region: str


class ReserveResponse(_CamelModel):
    instance: PoolInstanceView
    message: str


class AvailableResponse(_CamelModel):
    available_count: int = Field(..., alias="availableCount")
    instances: List[PoolInstanceSummary]


class ReturnInstanceRequest(BaseModel):
    instance: Optional[Dict[str, object]] = None


class MessageResponse(BaseModel):
    message: str


def instance_to_view(instance: AssignedInstance) -> InstanceView:
    return InstanceView(
        id=instance.id,
        instance_name=instance.instance_name,
        host=instance.host,
        admin_user=instance.admin_user,
        password=instance.password,
        region=instance.region,
        created_at=instance.created_at,
    )


def pool_instance_to_view(instance: PoolInstance) -> PoolInstanceView:
    return PoolInstanceView(
        id=instance.id,
        instance_name=instance.name,
        admin_username=instance.admin_username,
        admin_password=instance.admin_password,
        region=instance.region,
        host=instance.host,
    )


def _error(status_code: int, message: str, **extra: object) -> JSONResponse:
    content: Dict[str, object] = {"error": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def register_instance_routes(
    app: FastAPI,
    service: AllocationService,
    *,
    current_user: Callable[..., str],
) -> None:
    """Expose the per-user instance endpoints."""

    @app.get("/api/v1/instances", response_model=InstanceListResponse)
    async def list_instances(username: str = Depends(current_user)) -> InstanceListResponse:
        listing = service.list_for_user(username)
        return InstanceListResponse(
            instances=[instance_to_view(instance) for instance in listing.instances],
            count=listing.count,
            max_instances=listing.max_instances,
            can_create_more=listing.can_create_more,
        )

    @app.post(
        "/api/v1/instances",
        status_code=status.HTTP_201_CREATED,
        response_model=InstanceCreateResponse,
    )
    async def create_instance(username: str = Depends(current_user)) -> InstanceCreateResponse:
        instance = service.create_for_user(username)
        logger.info("User %s provisioned instance %s (%s)", username, instance.id, instance.instance_name)
        return InstanceCreateResponse(
            instance=instance_to_view(instance),
            message="Instance provisioned successfully",
            connection_string=instance.connection_string(),
        )

    @app.get("/api/v1/instances/{instance_id}", response_model=InstanceDetailResponse)
    async def get_instance(instance_id: str, username: str = Depends(current_user)):
        instance = service.get_for_user(username, instance_id)
        if instance is None:
            return _error(status.HTTP_404_NOT_FOUND, NOT_FOUND_MESSAGE)
        return InstanceDetailResponse(
            instance=instance_to_view(instance),
            connection_string=instance.connection_string(),
        )

    @app.delete("/api/v1/instances/{instance_id}", response_model=InstanceDeleteResponse)
    async def delete_instance(instance_id: str, username: str = Depends(current_user)):
        if not service.remove_for_user(username, instance_id):
            return _error(status.HTTP_404_NOT_FOUND, NOT_FOUND_MESSAGE)
        return InstanceDeleteResponse(message="Instance deleted successfully", instance_id=instance_id)


def register_cache_routes(app: FastAPI, service: AllocationService) -> None:
    """Expose the operational pool endpoints.

    These routes are unauthenticated and intended for demos and tests.
    """

    @app.post("/api/v1/cache/instances/reserve", response_model=ReserveResponse)
    async def reserve_instance():
        instance = service.reserve()
        if instance is None:
            return _error(status.HTTP_404_NOT_FOUND, "No available instances in cache", availableCount=0)
        return ReserveResponse(instance=pool_instance_to_view(instance), message="Instance reserved successfully")

    @app.get("/api/v1/cache/instances/available", response_model=AvailableResponse)
    async def available_instances() -> AvailableResponse:
        instances = service.pool.list_available()
        return AvailableResponse(
            available_count=len(instances),
            instances=[
                PoolInstanceSummary(id=instance.id, instance_name=instance.name, region=instance.region)
                for instance in instances
            ],
        )

    @app.post("/api/v1/cache/instances/return", response_model=MessageResponse)
    async def return_instance(request: ReturnInstanceRequest):
        if not request.instance:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid instance data")
        try:
            instance = PoolInstance.from_dict(request.instance)
        except ValueError:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid instance data")
        try:
            service.restore(instance)
        except DuplicateInstance as exc:
            return _error(status.HTTP_400_BAD_REQUEST, str(exc))
        return MessageResponse(message="Instance returned to cache successfully")


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(QuotaExceeded)
    async def handle_quota_exceeded(_: Request, exc: QuotaExceeded):
        return _error(
            status.HTTP_400_BAD_REQUEST,
            str(exc),
            currentCount=exc.current,
            maxInstances=exc.maximum,
        )

    @app.exception_handler(PoolExhausted)
    async def handle_pool_exhausted(_: Request, exc: PoolExhausted):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc), availableCount=exc.available)

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error("Storage failure while handling %s %s: %s", request.method, request.url.path, exc)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to update instance data",
            details=str(exc),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(_: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )


def build_service(settings: BrokerSettings) -> AllocationService:
    """Wire the pool, registry and allocation workflow from settings."""

    pool_store, registry_store = open_file_stores(settings.data_dir)
    pool = InstancePool(pool_store)
    registry = UserRegistry(registry_store, max_per_user=settings.max_instances_per_user)
    return AllocationService(
        pool,
        registry,
        rollback_on_assign_failure=settings.rollback_on_assign_failure,
    )


def seed_pool(service: AllocationService, settings: BrokerSettings) -> bool:
    seed = load_seed_file(settings.seed_file) if settings.seed_file else list(DEFAULT_SEED)
    return service.pool.ensure_seeded(seed)


def create_app(
    settings: BrokerSettings | None = None,
    *,
    service: AllocationService | None = None,
    token_auth: TokenAuth | None = None,
    seed: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application for the instance broker."""

    app_settings = settings or load_settings()
    broker = service or build_service(app_settings)
    if seed and seed_pool(broker, app_settings):
        logger.info("Instance pool bootstrapped in %s", broker.pool.store.describe())

    auth = token_auth or TokenAuth(app_settings.api_tokens)
    if not auth.configured:
        logger.warning("No API tokens are configured; every instance request will be rejected.")

    app = FastAPI(
        title="PostgreSQL Instance Broker",
        version="0.1.0",
        description="Hands out pre-provisioned PostgreSQL instances within a per-user quota.",
    )
    app.state.settings = app_settings
    app.state.service = broker

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    register_instance_routes(app, broker, current_user=auth)
    register_cache_routes(app, broker)
    register_error_handlers(app)
    return app


__all__ = ["build_service", "create_app", "seed_pool"]
