"""
Client for the SnapMaster engine's execution endpoint.
"""

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    async def get_api_access_token(self) -> str | None:
        ...


class EngineClient:
    """Dispatches trigger events to the engine on behalf of an active snap."""

    def __init__(
        self,
        engine_url: str,
        token_provider: TokenProvider,
        provider_name: str = "gcp",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.engine_url = engine_url.rstrip("/")
        self.token_provider = token_provider
        self.provider_name = provider_name
        self.timeout = timeout
        self._http_client = http_client

    def execute_url(self, user_id: str, active_snap_id: str) -> str:
        return f"{self.engine_url}/executesnap/{user_id}/{active_snap_id}"

    async def call_snap_engine(
        self, user_id: str, active_snap_id: str, event: str, payload: dict[str, Any]
    ) -> dict | None:
        """
        POST {event, ...payload} to the engine's executesnap endpoint.

        Returns:
            A success dict, or None if the token or the call failed.
        """
        token = await self.token_provider.get_api_access_token()
        if not token:
            logger.error("callSnapEngine: could not retrieve API access token")
            return None

        url = self.execute_url(user_id, active_snap_id)
        body = {"event": event, **payload}
        headers = {
            "content-type": "application/json",
            "authorization": f"Bearer {token}",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.error(f"callSnapEngine: timed out after {self.timeout}s calling {url}")
            return None
        except httpx.HTTPError as e:
            logger.error(f"callSnapEngine: caught exception: {e}")
            return None

        message = f"{self.provider_name}: invoked snap engine at {url}"
        logger.info(message)
        return {"status": "success", "message": message}
