"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from binarydeploy import __version__
from binarydeploy.api.routes import status, webhook
from binarydeploy.config import AgentSettings
from binarydeploy.deploy import Deployer
from binarydeploy.dispatch import DispatchGateway
from binarydeploy.errors import ProcessTerminationError
from binarydeploy.process import ProcessSupervisor
from binarydeploy.updater import SelfUpdateEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings: AgentSettings = app.state.settings
    logger.info(f"Starting webhook server on port {settings.port}")

    yield

    # Shutdown
    logger.info("Shutting down webhook server...")
    await app.state.gateway.shutdown()
    try:
        await app.state.supervisor.shutdown()
    except ProcessTerminationError as err:
        logger.error(f"Supervised process did not stop cleanly: {err}")
    logger.info("Server exited")


def build_gateway(settings: AgentSettings, supervisor: ProcessSupervisor) -> DispatchGateway:
    """Wire the deployment and self-update engines behind a gateway."""
    deployer = Deployer(supervisor, settings.deploy_dir)
    updater = SelfUpdateEngine(
        binary_path=settings.binary_path,
        self_update_dir=settings.self_update_dir,
        backup_path=settings.backup_path,
    )
    return DispatchGateway(settings, deployer, updater)


def create_app(
    settings: AgentSettings,
    supervisor: ProcessSupervisor | None = None,
    gateway: DispatchGateway | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="binarydeploy",
        description="Webhook-driven deployment agent",
        version=__version__,
        lifespan=lifespan,
    )

    supervisor = supervisor or ProcessSupervisor()
    app.state.settings = settings
    app.state.supervisor = supervisor
    app.state.gateway = gateway or build_gateway(settings, supervisor)

    app.include_router(webhook.router, tags=["webhook"])
    app.include_router(status.router, tags=["status"])

    return app
