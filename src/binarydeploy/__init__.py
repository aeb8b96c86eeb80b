"""binarydeploy - webhook-driven deployment agent with self-update."""

__version__ = "0.1.0"
