"""FastAPI dependencies."""

from fastapi import Request

from binarydeploy.config import AgentSettings
from binarydeploy.dispatch import DispatchGateway
from binarydeploy.process import ProcessSupervisor


async def get_settings(request: Request) -> AgentSettings:
    return request.app.state.settings


async def get_gateway(request: Request) -> DispatchGateway:
    """Get the webhook gateway from app state."""
    return request.app.state.gateway


async def get_supervisor(request: Request) -> ProcessSupervisor:
    return request.app.state.supervisor
