"""
FastAPI server for the SnapMaster GCP provider.

Usage:
    uvicorn gcp_provider.main:app --port 8080

Endpoints:
    GET  /                                        - Health / environment info
    POST /invokeAction                            - Run a build or deploy action
    POST /createTrigger                           - Register a Pub/Sub trigger
    POST /deleteTrigger                           - Remove a Pub/Sub trigger
    POST /gcp/webhooks/{userId}/{activeSnapId}    - Pub/Sub push endpoint
"""

import logging

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .actions import ActionExecutor, invoke_action
from .auth0 import Auth0Client
from .config import Settings, load_settings
from .credentials import CredentialResolver
from .engine import EngineClient
from .googleauth import GoogleTokenVerifier
from .models import ActionRequest, TriggerRequest
from .pubsub import GooglePubSubBackend, PubSubBackend
from .returnvalue import error_value
from .trigger import TriggerManager, webhook_url
from .webhooks import TokenVerifier, WebhookDispatcher, extract_bearer_token, parse_push_message

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def check_jwt(request: Request) -> dict:
    """Require a valid engine-issued bearer token."""
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        raise HTTPException(status_code=401, detail="Missing or malformed Authorization header")

    claims = await request.app.state.auth0.validate_jwt(token)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


def _validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        fields = [str(part) for part in error.get("loc", ()) if part != "body"]
        if error.get("type") == "json_invalid":
            return "request body is not valid JSON"
        if error.get("type") == "missing" and not fields:
            return "missing request body"
        if fields:
            return f'invalid field "{".".join(fields)}" in request body'
    return "request body is not an object"


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report a body that doesn't fit the request model as an error ReturnValue."""
    message = _validation_message(exc)
    logger.error(f"{request.url.path}: {message}")
    errors = [{"loc": list(error.get("loc", ())), "msg": error.get("msg")} for error in exc.errors()]
    return JSONResponse(status_code=200, content=error_value(message, {"errors": errors}).to_response())


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    backend: PubSubBackend | None = None,
    executor: ActionExecutor | None = None,
    token_verifier: TokenVerifier | None = None,
    auth0: Auth0Client | None = None,
    engine: EngineClient | None = None,
) -> FastAPI:
    """
    Build the provider app. Collaborators default to the real Google/Auth0
    implementations; tests pass fakes.
    """
    settings = settings or load_settings()

    auth0 = auth0 or Auth0Client(
        domain=settings.auth0_domain,
        audience=settings.auth0_audience,
        client_id=settings.auth0_client_id,
        client_secret=settings.auth0_client_secret,
        timeout=settings.http_timeout,
    )
    engine = engine or EngineClient(
        settings.engine_url,
        auth0,
        provider_name=settings.provider_name,
        timeout=settings.http_timeout,
    )
    resolver = CredentialResolver(settings.entity_name, settings.default_entity_name)
    executor = executor or ActionExecutor(
        settings.actions_dir,
        timeout=settings.action_timeout,
        excluded_params=(settings.entity_name,),
    )
    triggers = TriggerManager(
        settings,
        backend or GooglePubSubBackend(timeout=settings.backend_timeout),
        engine,
        resolver,
    )
    webhooks = WebhookDispatcher(
        token_verifier or GoogleTokenVerifier(settings.push_audience, timeout=settings.http_timeout),
        triggers,
    )

    app = FastAPI(
        title="SnapMaster GCP provider",
        description="Runs GCP actions and manages Pub/Sub triggers for the SnapMaster engine.",
        version="0.1.0",
    )
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.state.settings = settings
    app.state.auth0 = auth0
    app.state.resolver = resolver
    app.state.executor = executor
    app.state.triggers = triggers
    app.state.webhooks = webhooks

    @app.get("/")
    async def health():
        """Report which provider and environment this is."""
        return {
            "provider": settings.provider_name,
            "environment": settings.env,
            "account": settings.account,
        }

    @app.post("/invokeAction")
    async def invoke_action_route(request: ActionRequest, _claims: dict = Depends(check_jwt)):
        """Run the requested action and return its output."""
        result = await invoke_action(request, resolver, executor)
        return result.to_response()

    @app.post("/createTrigger")
    async def create_trigger_route(request: TriggerRequest, _claims: dict = Depends(check_jwt)):
        """Create the trigger and return its {url, id}."""
        result = await triggers.create_trigger(request)
        return result.to_response()

    @app.post("/deleteTrigger")
    async def delete_trigger_route(request: TriggerRequest, _claims: dict = Depends(check_jwt)):
        """Delete a trigger previously returned by createTrigger."""
        result = await triggers.delete_trigger(request)
        return result.to_response()

    @app.post(f"/{settings.provider_name}/webhooks/{{user_id}}/{{active_snap_id}}")
    async def webhook_route(
        user_id: str,
        active_snap_id: str,
        request: Request,
        background_tasks: BackgroundTasks,
    ):
        """Accept a Pub/Sub push delivery and forward it to the engine in the background."""
        audience = settings.push_audience or webhook_url(
            settings.provider_url, settings.provider_name, user_id, active_snap_id
        )
        if not await webhooks.authenticate(request.headers.get("authorization"), audience):
            return Response(status_code=401)

        try:
            payload = parse_push_message(await request.json())
        except Exception:
            logger.exception(f"webhook: could not process request for {user_id}:{active_snap_id}")
            return Response(status_code=500)

        background_tasks.add_task(webhooks.dispatch, user_id, active_snap_id, payload)
        return {"status": "accepted"}

    return app


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"environment: {settings.env}")
    logger.info(f"configuration: {settings.configuration}")
    logger.info(f"account: {settings.account}")


SETTINGS = load_settings()
configure_logging(SETTINGS)

app = create_app(SETTINGS)


def run() -> None:
    """Launch the API server on PORT (8080 for prod, 8081 otherwise)."""
    logger.info(f"SnapMaster GCP provider listening on port {SETTINGS.port}")
    uvicorn.run(app, host="0.0.0.0", port=SETTINGS.port)


if __name__ == "__main__":
    run()
