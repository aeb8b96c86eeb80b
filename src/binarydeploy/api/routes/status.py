"""Status routes."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from binarydeploy import __version__
from binarydeploy.api.deps import get_gateway, get_settings, get_supervisor
from binarydeploy.config import AgentSettings
from binarydeploy.dispatch import DispatchGateway
from binarydeploy.process import ProcessSupervisor

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Webhook server is running"


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@router.get("/status")
async def get_status(
    settings: Annotated[AgentSettings, Depends(get_settings)],
    gateway: Annotated[DispatchGateway, Depends(get_gateway)],
    supervisor: Annotated[ProcessSupervisor, Depends(get_supervisor)],
) -> dict[str, Any]:
    """Current server configuration, supervised process and background jobs."""
    return {
        "server": {
            "port": settings.port,
            "target_repo": settings.target_repo_url,
            "self_update_repo": settings.self_update_repo_url,
            "allowed_branches": settings.allowed_branches,
        },
        "process": supervisor.get_web_status(),
        "jobs": {
            "deploy": gateway.deploy_slot.status(),
            "self_update": gateway.self_update_slot.status(),
        },
        "self_update": {
            "binary_path": str(gateway.updater.binary_path),
            "backup_path": str(gateway.updater.backup_path),
            "has_backup": gateway.updater.has_backup(),
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }
