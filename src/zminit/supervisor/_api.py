"""Read-only FastAPI status endpoints for the supervisor.

The API reports what the supervisor is doing; it cannot start, stop or
reconfigure anything.
"""

# pyright: reportUnusedFunction=false
# FastAPI route handlers are registered via decorators, not direct calls

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Never

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, status
from pydantic import BaseModel

from zminit.exceptions import ServiceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ._supervisor import Supervisor


class TransitionResponse(BaseModel):
    """Response model for one recorded transition."""

    seq: int
    from_state: str
    to_state: str
    timestamp: str


class ServiceStatusResponse(BaseModel):
    """Response model for service status."""

    name: str
    state: str
    pid: int | None
    depends_on: list[str]
    restart_count: int
    consecutive_failures: int
    last_exit_code: int | None
    started_at: str | None
    stopped_at: str | None
    terminal_reason: str | None
    blocked_reason: str | None


class ServiceDetailResponse(ServiceStatusResponse):
    """Response model for one service including its history."""

    history: list[TransitionResponse]


class SupervisorStatusResponse(BaseModel):
    """Response model for overall supervisor status."""

    shutting_down: bool
    services: dict[str, ServiceStatusResponse]
    total_services: int
    running_services: int


def _build_service_status(supervisor: Supervisor, name: str) -> ServiceStatusResponse:
    service = supervisor.get_service(name)
    return ServiceStatusResponse(
        name=name,
        state=service.status.state.value,
        pid=service.status.pid,
        depends_on=list(service.spec.depends_on),
        restart_count=service.status.restart_count,
        consecutive_failures=service.status.consecutive_failures,
        last_exit_code=service.status.last_exit_code,
        started_at=service.status.started_at,
        stopped_at=service.status.stopped_at,
        terminal_reason=service.status.terminal_reason,
        blocked_reason=service.blocked_reason,
    )


def _raise_not_found(name: str, cause: ServiceNotFoundError) -> Never:
    """Raise HTTP 404 for service not found.

    Raises:
        HTTPException: Always raises with 404 status.
    """
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Service '{name}' not found",
    ) from cause


def create_status_router(supervisor: Supervisor) -> APIRouter:
    """Create a FastAPI router for supervisor status endpoints.

    Args:
        supervisor: The Supervisor instance to report on.

    Returns:
        A FastAPI APIRouter with read-only endpoints.
    """
    router = APIRouter(prefix="/supervisor", tags=["supervisor"])

    @router.get("/status", response_model=SupervisorStatusResponse)
    async def get_supervisor_status() -> SupervisorStatusResponse:
        """Get overall supervisor status."""
        services = {name: _build_service_status(supervisor, name) for name in supervisor.services}
        running_count = sum(1 for s in services.values() if s.state == "running")

        return SupervisorStatusResponse(
            shutting_down=supervisor.shutting_down,
            services=services,
            total_services=len(services),
            running_services=running_count,
        )

    @router.get("/services", response_model=list[ServiceStatusResponse])
    async def list_services() -> list[ServiceStatusResponse]:
        """List all managed services in start order."""
        return [_build_service_status(supervisor, name) for name in supervisor.startup_order]

    @router.get("/services/{name}", response_model=ServiceDetailResponse)
    async def get_service_status(name: str) -> ServiceDetailResponse:
        """Get status and transition history of a specific service."""
        try:
            summary = _build_service_status(supervisor, name)
        except ServiceNotFoundError as e:
            _raise_not_found(name, e)

        history = [
            TransitionResponse(
                seq=t.seq,
                from_state=t.from_state.value,
                to_state=t.to_state.value,
                timestamp=t.timestamp,
            )
            for t in supervisor.get_service(name).status.history
        ]
        return ServiceDetailResponse(**summary.model_dump(), history=history)

    return router


def create_status_app(supervisor: Supervisor) -> FastAPI:
    """Create the status application for a supervisor."""
    app = FastAPI(title="zminit", docs_url=None, redoc_url=None)
    app.include_router(create_status_router(supervisor))
    return app


class StatusServer(uvicorn.Server):
    """Uvicorn server that leaves signal handling to the supervisor."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def create_status_server(supervisor: Supervisor, port: int, host: str = "0.0.0.0") -> StatusServer:  # noqa: S104
    """Create a status server bound to ``host:port``."""
    config = uvicorn.Config(
        app=create_status_app(supervisor),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    return StatusServer(config)
