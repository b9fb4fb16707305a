"""HTTP liveness probe: GET the health path, 200 means healthy."""
import logging
from typing import Optional

import httpx

from deployctl.domain.entities.health import ProbeOutcome

logger = logging.getLogger(__name__)


class HttpProber:
    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient()

    async def probe(self, endpoint: str, timeout: float) -> ProbeOutcome:
        try:
            response = await self.client.get(endpoint, timeout=timeout)
        except httpx.TimeoutException:
            return ProbeOutcome(ok=False, error=f"timed out after {timeout:.1f}s")
        except httpx.HTTPError as e:
            return ProbeOutcome(ok=False, error=f"{type(e).__name__}: {e}")

        if response.status_code == 200:
            return ProbeOutcome(ok=True, status_code=200)
        logger.debug(f"🩺 {endpoint} answered {response.status_code}")
        return ProbeOutcome(ok=False, status_code=response.status_code)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
