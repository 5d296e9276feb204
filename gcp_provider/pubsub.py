"""
Pub/Sub backend built on google-cloud-pubsub.

Exposes the three admin operations the trigger lifecycle needs:
- create_topic: creates a topic, or if it exists, gets a reference to it
- create_subscription: creates a push (endpoint given) or pull subscription,
  or if it exists, gets a reference to it
- delete_subscription: deletes a subscription by name

Every operation returns a BackendResult instead of raising, so callers match
on the outcome rather than sniffing exception codes.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, TypeVar

from google.api_core import exceptions as api_exceptions
from google.cloud import pubsub_v1
from google.oauth2 import service_account

from .credentials import ServiceCredentials

logger = logging.getLogger(__name__)

ACK_DEADLINE_SECONDS = 60  # allow 60 seconds for message processing
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

T = TypeVar("T")


class Outcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass
class BackendResult:
    """Tagged result of a backend call: Created | AlreadyExists(handle) | Deleted | Failed(reason)."""

    outcome: Outcome
    handle: str | None = None
    reason: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome != Outcome.FAILED

    @classmethod
    def failed(cls, reason: str, timed_out: bool = False) -> "BackendResult":
        return cls(Outcome.FAILED, reason=reason, timed_out=timed_out)


class PubSubBackend(Protocol):
    """Capability consumed by the trigger manager."""

    async def create_topic(self, credentials: ServiceCredentials, name: str) -> BackendResult:
        ...

    async def create_subscription(
        self,
        credentials: ServiceCredentials,
        topic: str,
        name: str,
        endpoint: str | None = None,
        service_account_email: str | None = None,
    ) -> BackendResult:
        ...

    async def delete_subscription(self, credentials: ServiceCredentials, name: str) -> BackendResult:
        ...


def subscription_options(
    endpoint: str | None = None, service_account_email: str | None = None
) -> dict:
    """
    Subscription fields for a push (endpoint given) or pull subscription.

    Push deliveries carry an OIDC token minted for service_account_email.
    """
    options: dict = {"ack_deadline_seconds": ACK_DEADLINE_SECONDS}
    if endpoint:
        push_config: dict = {"push_endpoint": endpoint}
        if service_account_email:
            push_config["oidc_token"] = {"service_account_email": service_account_email}
        options["push_config"] = push_config
    return options


class GooglePubSubBackend:
    """
    Pub/Sub admin operations against Google Cloud.

    A client is created per call from the caller's service credentials; the
    backend keeps no credentials between calls. The google-cloud-pubsub clients
    are synchronous, so calls run in the default executor.
    """

    def __init__(self, timeout: float = 60.0):
        """
        Args:
            timeout: Deadline in seconds for each backend API call.
        """
        self.timeout = timeout

    def _google_credentials(self, credentials: ServiceCredentials) -> service_account.Credentials:
        info = {"token_uri": DEFAULT_TOKEN_URI, **credentials.info}
        return service_account.Credentials.from_service_account_info(info)

    def _project_id(self, credentials: ServiceCredentials) -> str:
        if not credentials.project_id:
            raise ValueError("service credentials do not name a project_id")
        return credentials.project_id

    async def _call(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        # The API deadline should fire first; this bounds token refresh and channel setup too.
        return await asyncio.wait_for(loop.run_in_executor(None, fn), timeout=self.timeout + 5)

    async def create_topic(self, credentials: ServiceCredentials, name: str) -> BackendResult:
        try:
            project_id = self._project_id(credentials)
            publisher = pubsub_v1.PublisherClient(credentials=self._google_credentials(credentials))
        except Exception as e:
            logger.error(f"create_topic: could not initialize client: {e}")
            return BackendResult.failed(str(e))

        try:
            return await self._create_or_get_topic(publisher, publisher.topic_path(project_id, name))
        finally:
            publisher.transport.close()

    async def _create_or_get_topic(self, publisher: pubsub_v1.PublisherClient, topic_path: str) -> BackendResult:
        try:
            topic = await self._call(
                lambda: publisher.create_topic(request={"name": topic_path}, timeout=self.timeout)
            )
            logger.info(f"Created topic {topic.name}")
            return BackendResult(Outcome.CREATED, handle=topic.name)
        except api_exceptions.AlreadyExists:
            pass
        except Exception as e:
            return self._failure("create_topic", e)

        try:
            topic = await self._call(
                lambda: publisher.get_topic(request={"topic": topic_path}, timeout=self.timeout)
            )
            logger.info(f"Topic {topic.name} already exists")
            return BackendResult(Outcome.ALREADY_EXISTS, handle=topic.name)
        except Exception as e:
            return self._failure("create_topic (existing)", e)

    async def create_subscription(
        self,
        credentials: ServiceCredentials,
        topic: str,
        name: str,
        endpoint: str | None = None,
        service_account_email: str | None = None,
    ) -> BackendResult:
        try:
            subscriber = pubsub_v1.SubscriberClient(credentials=self._google_credentials(credentials))
            subscription_path = subscriber.subscription_path(self._project_id(credentials), name)
        except Exception as e:
            logger.error(f"create_subscription: could not initialize client: {e}")
            return BackendResult.failed(str(e))

        request = {
            "name": subscription_path,
            "topic": topic,
            **subscription_options(endpoint, service_account_email),
        }

        with subscriber:
            try:
                subscription = await self._call(
                    lambda: subscriber.create_subscription(request=request, timeout=self.timeout)
                )
                kind = "push" if endpoint else "pull"
                logger.info(f"Created {kind} subscription {subscription.name}")
                return BackendResult(Outcome.CREATED, handle=subscription.name)
            except api_exceptions.AlreadyExists:
                pass
            except Exception as e:
                return self._failure("create_subscription", e)

            try:
                subscription = await self._call(
                    lambda: subscriber.get_subscription(
                        request={"subscription": subscription_path}, timeout=self.timeout
                    )
                )
                logger.info(f"Subscription {subscription.name} already exists")
                return BackendResult(Outcome.ALREADY_EXISTS, handle=subscription.name)
            except Exception as e:
                return self._failure("create_subscription (existing)", e)

    async def delete_subscription(self, credentials: ServiceCredentials, name: str) -> BackendResult:
        try:
            subscriber = pubsub_v1.SubscriberClient(credentials=self._google_credentials(credentials))
            subscription_path = subscriber.subscription_path(self._project_id(credentials), name)
        except Exception as e:
            logger.error(f"delete_subscription: could not initialize client: {e}")
            return BackendResult.failed(str(e))

        with subscriber:
            try:
                await self._call(
                    lambda: subscriber.delete_subscription(
                        request={"subscription": subscription_path}, timeout=self.timeout
                    )
                )
            except Exception as e:
                return self._failure("delete_subscription", e)

        logger.info(f"Deleted subscription {subscription_path}")
        return BackendResult(Outcome.DELETED, handle=subscription_path)

    def _failure(self, operation: str, error: Exception) -> BackendResult:
        if isinstance(error, (api_exceptions.DeadlineExceeded, api_exceptions.RetryError, asyncio.TimeoutError)):
            logger.error(f"{operation}: timed out after {self.timeout}s")
            return BackendResult.failed(f"{operation} timed out", timed_out=True)
        if isinstance(error, api_exceptions.NotFound):
            logger.error(f"{operation}: not found: {error.message}")
            return BackendResult.failed(f"not found: {error.message}")
        logger.error(f"{operation}: caught exception: {error}")
        return BackendResult.failed(str(error))
