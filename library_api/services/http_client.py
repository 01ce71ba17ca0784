import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class HTTPClient:
    """Pooled async HTTP client shared by the outbound services"""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Connection limits for the pool
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Async GET request through the connection pool"""
        return await self._client.get(url, **kwargs)

    async def close(self):
        """Close the underlying client"""
        await self._client.aclose()


# Process-wide client instance, owned by the API lifespan
_global_client: Optional[HTTPClient] = None


async def get_http_client() -> HTTPClient:
    """Get or create the process-wide HTTP client"""
    global _global_client
    if _global_client is None:
        _global_client = HTTPClient()
        logger.debug("HTTP client created")
    return _global_client


async def cleanup_http_client():
    """Close the process-wide HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
