"""
Async HTTP Client Shared Infrastructure

Ensures singleton httpx.AsyncClient usage across the FastAPI lifespan
and ad-hoc callers to prevent socket exhaustion.
"""

from typing import Optional
import httpx
import structlog

logger = structlog.get_logger()

_client: Optional[httpx.AsyncClient] = None


def get_http_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """
    Returns the global shared httpx.AsyncClient, creating it lazily
    when the application lifespan has not initialized it.
    """
    global _client

    if _client is None:
        logger.warning(
            "http_client_lazy_initialized",
            msg="Client was not pre-initialized",
        )
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or 20.0, connect=10.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            http2=True,
        )

    return _client


async def init_http_client() -> None:
    """Initializes the global httpx.AsyncClient for the application lifespan."""
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return

    _client = httpx.AsyncClient(
        http2=True,
        timeout=httpx.Timeout(20.0, connect=10.0),
        limits=httpx.Limits(
            max_connections=200,
            max_keepalive_connections=20,
            keepalive_expiry=30.0,
        ),
        headers={"User-Agent": "billsync/0.1"},
    )
    logger.info("http_client_initialized", http2=True, max_connections=200)


async def close_http_client() -> None:
    """Gracefully shuts down the global client, flushing its connection pool."""
    global _client
    if _client is None:
        return

    await _client.aclose()
    _client = None
    logger.info("http_client_closed")
