"""
Provider-specific creation, deletion, and handling of triggers.

A trigger is a push subscription on a Pub/Sub topic whose endpoint is this
provider's webhook for the active snap. Names are derived from the request, so
creating the same trigger twice converges on the same subscription.

Exports:
    TriggerManager.create_trigger: create the trigger
    TriggerManager.delete_trigger: delete the trigger
    TriggerManager.handle_trigger: handle trigger invocation
"""

import logging
from typing import Any, Protocol
from urllib.parse import quote

from .config import Settings
from .credentials import CredentialResolver, ServiceCredentials
from .models import TriggerRequest
from .pubsub import PubSubBackend
from .returnvalue import ReturnValue, error_value, success_value, timeout_detail

logger = logging.getLogger(__name__)

PUBSUB_EVENT = "pubsub"

# Characters encodeURI leaves alone
URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


class SnapEngine(Protocol):
    async def call_snap_engine(
        self, user_id: str, active_snap_id: str, event: str, payload: dict[str, Any]
    ) -> dict | None:
        ...


class TriggerError(Exception):
    """Raised inside an operation to short-circuit with an error ReturnValue."""

    def __init__(self, message: str, detail: Any = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


def subscription_name(active_snap_id: str, topic: str) -> str:
    return f"snapmaster-{active_snap_id}-{topic}"


def webhook_url(provider_url: str, provider_name: str, user_id: str, active_snap_id: str) -> str:
    return quote(f"{provider_url}/{provider_name}/webhooks/{user_id}/{active_snap_id}", safe=URI_SAFE)


class TriggerManager:
    """Create, delete and dispatch Pub/Sub triggers."""

    def __init__(
        self,
        settings: Settings,
        backend: PubSubBackend,
        engine: SnapEngine,
        resolver: CredentialResolver | None = None,
    ):
        self.settings = settings
        self.backend = backend
        self.engine = engine
        self.resolver = resolver or CredentialResolver(
            settings.entity_name, settings.default_entity_name
        )

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _require_pubsub_param(self, param: dict[str, Any]) -> tuple[str, str]:
        event = param.get("event")
        if not event:
            raise TriggerError('missing required parameter "event"')
        if event != PUBSUB_EVENT:
            raise TriggerError(f'unknown event "{event}"')

        topic = param.get("topic")
        if not topic:
            raise TriggerError('missing required parameter "topic"')

        project = param.get("project")
        if not project:
            raise TriggerError('missing required parameter "project"')

        return topic, project

    def _credentials(self, request: TriggerRequest, project: str) -> ServiceCredentials:
        resolution = self.resolver.resolve(project, request.connection_info, request.param)
        if not resolution.ok:
            raise TriggerError(resolution.error)
        return resolution.credentials

    def _backend_error(self, message: str, reason: str | None, timed_out: bool) -> TriggerError:
        if timed_out:
            return TriggerError(message, timeout_detail(reason=reason))
        return TriggerError(message, reason)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_trigger(self, request: TriggerRequest) -> ReturnValue:
        """
        Create (or find) the topic and push subscription for an active snap.

        Returns:
            success with {url, id}, or error naming what was missing or failed.
        """
        try:
            for field, value in (
                ("userId", request.user_id),
                ("activeSnapId", request.active_snap_id),
                ("param", request.param),
            ):
                if not value:
                    raise TriggerError(f'missing required field "{field}" in request body')

            topic_name, project = self._require_pubsub_param(request.param)
            credentials = self._credentials(request, project)

            # create or get a reference to the topic
            topic = await self.backend.create_topic(credentials, topic_name)
            if not topic.ok:
                raise self._backend_error(
                    f"could not create or find topic {topic_name}", topic.reason, topic.timed_out
                )

            sub_name = subscription_name(request.active_snap_id, topic_name)
            endpoint = webhook_url(
                self.settings.provider_url,
                self.settings.provider_name,
                request.user_id,
                request.active_snap_id,
            )

            sub = await self.backend.create_subscription(
                credentials,
                topic.handle,
                sub_name,
                endpoint=endpoint,
                service_account_email=credentials.client_email,
            )
            if not sub.ok:
                raise self._backend_error(
                    f"could not create subscription for topic {topic_name}", sub.reason, sub.timed_out
                )

            logger.info(f"createTrigger: {sub.outcome.value} subscription {sub_name} -> {endpoint}")
            return success_value({"url": endpoint, "id": sub_name})

        except TriggerError as e:
            logger.error(f"createTrigger: {e.message}")
            return error_value(e.message, e.detail)
        except Exception as e:
            logger.exception("createTrigger: caught exception")
            return error_value(str(e))

    async def delete_trigger(self, request: TriggerRequest) -> ReturnValue:
        """Delete the subscription named by triggerData.id."""
        try:
            if not request.param:
                raise TriggerError('missing required field "param" in request body')

            topic_name, project = self._require_pubsub_param(request.param)
            credentials = self._credentials(request, project)

            if request.trigger_data is None:
                raise TriggerError("missing triggerData in request")

            sub_name = request.trigger_data.id
            if not sub_name:
                raise TriggerError('triggerData missing required parameter "id"')

            response = await self.backend.delete_subscription(credentials, sub_name)
            if not response.ok:
                raise self._backend_error(
                    f"could not delete subscription to topic {topic_name}",
                    response.reason,
                    response.timed_out,
                )

            logger.info(f"deleteTrigger: deleted subscription {sub_name}")
            return success_value({"id": sub_name, "deleted": True})

        except TriggerError as e:
            logger.error(f"deleteTrigger: {e.message}")
            return error_value(e.message, e.detail)
        except Exception as e:
            logger.exception("deleteTrigger: caught exception")
            return error_value(str(e))

    async def handle_trigger(
        self, user_id: str, active_snap_id: str, event: str, payload: dict[str, Any]
    ) -> ReturnValue:
        """Forward a trigger invocation to the engine."""
        failure = error_value(f"could not trigger active snap {user_id}:{active_snap_id}")

        if event != PUBSUB_EVENT:
            logger.error(f"handleTrigger: unknown event {event}")
            return error_value(f'unknown event "{event}"')

        try:
            response = await self.engine.call_snap_engine(user_id, active_snap_id, event, payload)
        except Exception:
            logger.exception("handleTrigger: caught exception")
            return failure

        if not response:
            logger.error(f"handleTrigger: {failure.message}")
            return failure
        return success_value(response)
