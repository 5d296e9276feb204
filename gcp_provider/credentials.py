"""
Service credential resolution.

A request can carry the GCP service-account key in one of two places:

- Inline: the engine already resolved the user's default connection and passes
  it as ``connectionInfo``. Selected when ``param.project`` is the default
  entity sentinel (``gcp:projects:default``).
- Embedded: the named project entity travels inside ``param`` under
  ``gcp:projects``.

Either way the entity holds a ``key`` field with the service-account JSON.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

REQUIRED_KEY_FIELDS = ("private_key", "client_email")


@dataclass(frozen=True)
class ServiceCredentials:
    """Parsed service-account key. The repr never includes key material."""

    client_email: str
    private_key: str = field(repr=False)
    project_id: str | None = None
    info: dict = field(default_factory=dict, repr=False)

    def serialize(self) -> str:
        """Serialized key, suitable for handing to gcloud as a key file."""
        return json.dumps(self.info)


@dataclass(frozen=True)
class Inline:
    """Credential source: connection info resolved by the engine."""

    connection_info: Any


@dataclass(frozen=True)
class Embedded:
    """Credential source: named entity embedded in the request param."""

    entity: Any


CredentialSource = Inline | Embedded


@dataclass
class Resolution:
    """
    Outcome of resolving credentials: either credentials or an error message.

    project is the GCP project the credentials act on: the key's project_id
    for the default connection, otherwise the project named in the request.
    """

    credentials: ServiceCredentials | None = None
    error: str | None = None
    project: str | None = None

    @property
    def ok(self) -> bool:
        return self.credentials is not None


class CredentialResolver:
    """Resolve service credentials from a request's layered parameters."""

    def __init__(self, entity_name: str, default_entity_name: str):
        self.entity_name = entity_name
        self.default_entity_name = default_entity_name

    def select_source(self, project: str, connection_info: Any, param: dict) -> CredentialSource:
        if project == self.default_entity_name:
            return Inline(connection_info)
        return Embedded(param.get(self.entity_name))

    def resolve(self, project: str, connection_info: Any, param: dict) -> Resolution:
        """
        Resolve credentials for a project.

        Args:
            project: The project named in the request param.
            connection_info: Engine-supplied connection info (may be None).
            param: The request param.

        Returns:
            Resolution carrying either ServiceCredentials or a descriptive error.
        """
        try:
            source = self.select_source(project, connection_info, param)
            match source:
                case Inline(connection_info=info):
                    entity = _normalize_connection_info(info)
                case Embedded(entity=entity):
                    pass

            if not entity:
                return Resolution(error=f"missing required parameter {self.entity_name}")
            if not isinstance(entity, dict):
                return Resolution(error=f"invalid {self.entity_name} entity")

            key = entity.get("key")
            if not key:
                return Resolution(error=f"could not find key in {self.entity_name}")

            credentials = parse_key(key)
            if credentials is None:
                return Resolution(error="could not parse GCP key information")

            logger.debug(f"Resolved service credentials for {credentials.client_email}")
            if isinstance(source, Inline):
                project = credentials.project_id
            return Resolution(credentials=credentials, project=project)

        except Exception as e:
            logger.error(f"Credential resolution failed: {type(e).__name__}")
            return Resolution(error=f"could not resolve service credentials: {type(e).__name__}")


def _normalize_connection_info(info: Any) -> Any:
    """Accept the engine's list form: [{"name": "key", "value": "..."}, ...]."""
    if isinstance(info, list):
        return {
            item["name"]: item.get("value")
            for item in info
            if isinstance(item, dict) and "name" in item
        }
    return info


def parse_key(key: Any) -> ServiceCredentials | None:
    """
    Parse a service-account key given as a JSON string or a decoded mapping.

    Returns None when the key can't be parsed or lacks private_key/client_email.
    Parse errors are not logged with their message since it may echo key content.
    """
    if isinstance(key, str):
        try:
            key_info = json.loads(key)
        except ValueError:
            return None
    else:
        key_info = key

    if not isinstance(key_info, dict):
        return None
    if not all(key_info.get(name) for name in REQUIRED_KEY_FIELDS):
        return None

    return ServiceCredentials(
        client_email=key_info["client_email"],
        private_key=key_info["private_key"],
        project_id=key_info.get("project_id"),
        info=dict(key_info),
    )
