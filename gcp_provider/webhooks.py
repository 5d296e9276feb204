"""
Inbound webhook handling for Pub/Sub push deliveries.

The route is unauthenticated at the HTTP layer. The dispatcher checks the
Authorization bearer token itself, acknowledges the delivery and then forwards
the event to the engine in the background: the HTTP response does not mean the
engine call has completed.
"""

import base64
import binascii
import json
import logging
from typing import Any, Protocol

from .trigger import PUBSUB_EVENT, TriggerManager

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


class TokenVerifier(Protocol):
    async def verify(self, token: str, audience: str | None = None) -> bool:
        ...


class InvalidPushMessage(ValueError):
    """The request body is not a Pub/Sub push envelope."""


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from 'Bearer <token>', or None if the header is missing or malformed."""
    if not authorization:
        return None
    if authorization[: len(BEARER_PREFIX)].lower() != BEARER_PREFIX:
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token or " " in token:
        return None
    return token


def _decode_data(data: str | None) -> Any:
    if not data:
        return None
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPushMessage(f"message data is not base64: {e}") from e

    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


def parse_push_message(body: Any) -> dict[str, Any]:
    """
    Convert a Pub/Sub push envelope into the payload forwarded to the engine.

    The push body looks like:
        {"message": {"data": <base64>, "attributes": {...}, "messageId": "...",
                     "publishTime": "..."}, "subscription": "projects/.../subscriptions/..."}
    """
    if not isinstance(body, dict):
        raise InvalidPushMessage("request body is not an object")
    message = body.get("message")
    if not isinstance(message, dict):
        raise InvalidPushMessage('request body is missing "message"')

    return {
        "data": _decode_data(message.get("data")),
        "attributes": message.get("attributes") or {},
        "messageId": message.get("messageId") or message.get("message_id"),
        "publishTime": message.get("publishTime") or message.get("publish_time"),
        "subscription": body.get("subscription"),
    }


class WebhookDispatcher:
    """Authenticate webhook calls and dispatch them to the trigger manager."""

    def __init__(self, verifier: TokenVerifier, triggers: TriggerManager):
        self.verifier = verifier
        self.triggers = triggers

    async def authenticate(self, authorization: str | None, audience: str | None = None) -> bool:
        """Check the bearer token, which must have been minted for audience."""
        token = extract_bearer_token(authorization)
        if token is None:
            logger.warning("webhook: missing or malformed Authorization header")
            return False
        if not await self.verifier.verify(token, audience):
            logger.warning("webhook: token verification failed")
            return False
        return True

    async def dispatch(self, user_id: str, active_snap_id: str, payload: dict[str, Any]) -> None:
        """Forward the event to the engine. Runs after the HTTP response has been sent."""
        try:
            result = await self.triggers.handle_trigger(user_id, active_snap_id, PUBSUB_EVENT, payload)
        except Exception:
            logger.exception(f"webhook: dispatch failed for {user_id}:{active_snap_id}")
            return

        if result.ok:
            logger.info(f"webhook: dispatched event for {user_id}:{active_snap_id}")
        else:
            logger.error(f"webhook: {result.message}")
