import httpx

from .config import ProxyConfig
from .utils import get_user_agent


def create_http_client(config: ProxyConfig) -> httpx.AsyncClient:
    """Build the pooled client shared by all requests of one app instance."""
    limits = httpx.Limits(
        max_connections=config.max_concurrent,
        max_keepalive_connections=max(1, config.max_concurrent // 10),
    )
    timeout = httpx.Timeout(
        timeout=config.request_timeout_s,
        connect=config.connect_timeout_s,
    )
    return httpx.AsyncClient(
        limits=limits,
        timeout=timeout,
        headers={"User-Agent": get_user_agent()},
    )


async def close_http_client(client: httpx.AsyncClient) -> None:
    if client.is_closed:
        return
    await client.aclose()
