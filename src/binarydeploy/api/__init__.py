"""HTTP API for webhooks and status."""

from binarydeploy.api.app import create_app

__all__ = ["create_app"]
