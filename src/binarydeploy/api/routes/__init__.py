"""API route modules."""

from binarydeploy.api.routes import status, webhook

__all__ = ["status", "webhook"]
