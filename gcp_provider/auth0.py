"""
Auth0 integration.

Provider services all authenticate through Auth0 and share one API client
id/secret. Two uses here:
- get_api_access_token: client-credentials token for calling the engine
- validate_jwt: verify the engine's bearer token on inbound API calls
"""

import asyncio
import logging

import httpx
import jwt

logger = logging.getLogger(__name__)


class Auth0Client:
    """Client for the Auth0 tenant shared by the engine and its providers."""

    def __init__(
        self,
        domain: str,
        audience: str,
        client_id: str = "",
        client_secret: str = "",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.domain = domain
        self.audience = audience
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._http_client = http_client
        self._jwks_client = jwt.PyJWKClient(self.jwks_url) if domain else None

    @property
    def issuer(self) -> str:
        return f"https://{self.domain}/"

    @property
    def jwks_url(self) -> str:
        return f"https://{self.domain}/.well-known/jwks.json"

    @property
    def token_url(self) -> str:
        return f"https://{self.domain}/oauth/token"

    async def get_api_access_token(self) -> str | None:
        """
        Obtain a service-to-service access token via the client-credentials grant.

        A new token is requested on every call.

        Returns:
            The access token, or None if it could not be obtained.
        """
        if not self.domain or not self.client_id or not self.client_secret:
            logger.error("getAPIAccessToken: Auth0 client credentials are not configured")
            return None

        body = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "audience": self.audience,
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.token_url, json=body, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.token_url, json=body)
            response.raise_for_status()
            return response.json().get("access_token")
        except httpx.TimeoutException:
            logger.error(f"getAPIAccessToken: timed out after {self.timeout}s")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"getAPIAccessToken: caught exception: {e}")
            return None

    def _decode(self, token: str) -> dict:
        signing_key = self._jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=self.audience,
            issuer=self.issuer,
        )

    async def validate_jwt(self, token: str) -> dict | None:
        """
        Verify an RS256 access token issued by this tenant.

        Returns:
            The token claims, or None if the token is invalid.
        """
        if self._jwks_client is None:
            logger.error("checkJwt: AUTH0_DOMAIN is not configured")
            return None

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._decode, token), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"checkJwt: timed out after {self.timeout}s")
            return None
        except jwt.PyJWTError as e:
            logger.warning(f"checkJwt: invalid token: {e}")
            return None
