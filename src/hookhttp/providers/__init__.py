"""Transport providers."""

from hookhttp.providers.base import Provider, StreamResponse
from hookhttp.providers.httpx_provider import HttpxProvider

__all__ = ["HttpxProvider", "Provider", "StreamResponse"]
