"""
TCP connectivity probe used to measure server response time.
"""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


async def probe_tcp(host: str, port: int = 80, timeout: float = 5.0) -> float | None:
    """Time a TCP connect to host:port.

    Returns the connect time in milliseconds, or None when the connection
    fails or does not complete within ``timeout`` seconds.
    """
    start = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug(f"TCP probe to {host}:{port} failed: {e!r}")
        return None

    elapsed_ms = (time.perf_counter() - start) * 1000
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return round(elapsed_ms, 2)
