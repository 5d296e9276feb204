"""
Process-wide configuration.

Settings are read from the environment exactly once at startup and handed to
every component. The dataclass is frozen, so nothing can change them while
requests are being served.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

PROVIDER_NAME = "gcp"

PROD = "prod"
DEV = "dev"
DEV_HOSTED = "devhosted"

DEFAULT_ACTIONS_DIR = Path(__file__).resolve().parent / "actions" / "scripts"

# Engine and provider base URLs per account
ENGINE_URLS = {
    PROD: "https://www.snapmaster.io",
    DEV: "http://localhost:8080",
}
PROVIDER_URLS = {
    PROD: "https://gcp.snapmaster.io",
    DEV: "http://localhost:8081",
}


@dataclass(frozen=True)
class Settings:
    """Immutable provider configuration."""

    env: str = PROD
    configuration: str = PROD
    account: str = PROD
    port: int = 8080
    provider_name: str = PROVIDER_NAME
    engine_url: str = ENGINE_URLS[PROD]
    provider_url: str = PROVIDER_URLS[PROD]
    auth0_domain: str = ""
    auth0_audience: str = ""
    auth0_client_id: str = ""
    auth0_client_secret: str = ""
    push_audience: str | None = None
    actions_dir: Path = DEFAULT_ACTIONS_DIR
    action_timeout: float = 600.0
    backend_timeout: float = 60.0
    http_timeout: float = 30.0
    log_level: str = "INFO"

    @property
    def dev_mode(self) -> bool:
        return self.configuration == DEV

    @property
    def entity_name(self) -> str:
        """Key under which a named project entity is embedded in a request's param."""
        return f"{self.provider_name}:projects"

    @property
    def default_entity_name(self) -> str:
        """Project sentinel selecting the caller-resolved connection info."""
        return f"{self.entity_name}:default"


def _float_env(environ: dict, name: str, default: float) -> float:
    value = environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


def load_settings(environ: dict | None = None) -> Settings:
    """
    Build Settings from environment variables.

    ENV selects the environment: 'prod', 'dev', or 'devhosted'. A devhosted
    deployment runs the prod configuration against the dev account.

    Args:
        environ: Mapping to read from. Defaults to os.environ.

    Returns:
        Frozen Settings instance.
    """
    environ = os.environ if environ is None else environ

    env = environ.get("ENV") or PROD
    configuration = PROD if env == DEV_HOSTED else env
    account = DEV if env == DEV_HOSTED else env

    default_port = 8080 if configuration == PROD else 8081
    port = int(environ.get("PORT") or default_port)

    return Settings(
        env=env,
        configuration=configuration,
        account=account,
        port=port,
        engine_url=(environ.get("SNAPMASTER_URL") or ENGINE_URLS.get(account, ENGINE_URLS[PROD])).rstrip("/"),
        provider_url=(environ.get("PROVIDER_URL") or PROVIDER_URLS.get(account, PROVIDER_URLS[PROD])).rstrip("/"),
        auth0_domain=environ.get("AUTH0_DOMAIN", ""),
        auth0_audience=environ.get("AUTH0_AUDIENCE", ""),
        auth0_client_id=environ.get("AUTH0_CLIENT_ID", ""),
        auth0_client_secret=environ.get("AUTH0_CLIENT_SECRET", ""),
        push_audience=environ.get("PUSH_AUDIENCE") or None,
        actions_dir=Path(environ.get("ACTIONS_DIR") or DEFAULT_ACTIONS_DIR),
        action_timeout=_float_env(environ, "ACTION_TIMEOUT", 600.0),
        backend_timeout=_float_env(environ, "BACKEND_TIMEOUT", 60.0),
        http_timeout=_float_env(environ, "HTTP_TIMEOUT", 30.0),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )
