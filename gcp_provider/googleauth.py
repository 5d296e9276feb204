"""
Verification of Google-signed OIDC tokens.

Pub/Sub push deliveries carry an OIDC identity token minted for the service
account named in the subscription's push config.
"""

import asyncio
import logging

import google.auth.transport.requests
from google.oauth2 import id_token

logger = logging.getLogger(__name__)


class GoogleTokenVerifier:
    """Verify bearer tokens presented by Pub/Sub push requests."""

    def __init__(self, audience: str | None = None, timeout: float = 30.0):
        """
        Args:
            audience: Expected token audience when verify() is not given one.
            timeout: Seconds to wait for verification, including fetching certs.
        """
        self.audience = audience
        self.timeout = timeout
        self._request = google.auth.transport.requests.Request()

    def _verify(self, token: str, audience: str | None) -> dict:
        return id_token.verify_oauth2_token(token, self._request, audience=audience)

    async def verify(self, token: str, audience: str | None = None) -> bool:
        """
        Return True if the token is a valid Google-issued ID token for audience.

        Pub/Sub mints push tokens with the push endpoint URL as their audience
        unless the subscription names another one.
        """
        audience = audience or self.audience
        loop = asyncio.get_running_loop()
        try:
            claims = await asyncio.wait_for(
                loop.run_in_executor(None, self._verify, token, audience), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"validateJwt: timed out after {self.timeout}s")
            return False
        except Exception as e:
            logger.error(f"validateJwt: caught exception: {e}")
            return False

        logger.debug(f"Verified push token for {claims.get('email')}")
        return True
