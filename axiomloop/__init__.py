"""Incremental event-to-model reconstruction for streamed agent runs."""

from axiomloop.application.client.stream_client import SurfaceClient

__version__ = "0.1.0"

__all__ = ["SurfaceClient", "__version__"]
