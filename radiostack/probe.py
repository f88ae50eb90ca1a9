"""HTTP reachability probe for a station's web interface."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    url: str
    reachable: bool = False
    status_code: int | None = None
    latency_ms: float = 0.0
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "reachable": self.reachable,
            "status_code": self.status_code,
            "latency_ms": round(self.latency_ms, 1),
            "error": self.error,
        }


async def probe_station(
    address: str,
    port: int = 80,
    path: str = "/",
    timeout: float = 3.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProbeResult:
    """GET the station's web endpoint; any response below 500 counts as up."""
    url = f"http://{address}/" if port == 80 else f"http://{address}:{port}/"
    url = url.rstrip("/") + path
    result = ProbeResult(url=url)
    started = time.monotonic()
    try:
        async with httpx.AsyncClient(
            verify=False,  # stations on the LAN usually have self-signed certs
            follow_redirects=True,
            timeout=timeout,
            transport=transport,
        ) as client:
            resp = await client.get(url)
        result.status_code = resp.status_code
        # 4xx still means the web server is answering (login redirects, auth).
        result.reachable = resp.status_code < 500
    except httpx.HTTPError as exc:
        result.error = str(exc) or exc.__class__.__name__
        logger.debug("Probe of %s failed: %s", url, result.error)
    result.latency_ms = (time.monotonic() - started) * 1000
    return result
