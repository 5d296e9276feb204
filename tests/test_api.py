"""
Route tests for the provider app, with Google/Auth0 collaborators replaced by fakes.
"""

from __future__ import annotations

import base64
import dataclasses
import json
import stat

import pytest
from fastapi.testclient import TestClient

from gcp_provider.actions import ActionExecutor
from gcp_provider.main import check_jwt, create_app

from conftest import FakeEngine


class FakeAuth0:
    def __init__(self, valid=True):
        self.valid = valid

    async def validate_jwt(self, token):
        return {"sub": "engine"} if self.valid and token == "engine-token" else None

    async def get_api_access_token(self):
        return "service-token"


@pytest.fixture
def app(settings, backend, verifier, engine):
    return create_app(
        settings,
        backend=backend,
        executor=ActionExecutor(settings.actions_dir, timeout=5, excluded_params=("gcp:projects",)),
        token_verifier=verifier,
        auth0=FakeAuth0(),
        engine=engine,
    )


@pytest.fixture
def client(app):
    app.dependency_overrides[check_jwt] = lambda: {"sub": "engine"}
    return TestClient(app)


def push_body(data):
    return {
        "message": {"data": base64.b64encode(json.dumps(data).encode()).decode(), "messageId": "m1"},
        "subscription": "projects/p1/subscriptions/snapmaster-a1-t1",
    }


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["provider"] == "gcp"


def test_engine_routes_require_jwt(app, trigger_body):
    client = TestClient(app)

    assert client.post("/createTrigger", json=trigger_body).status_code == 401
    assert client.post(
        "/createTrigger", json=trigger_body, headers={"Authorization": "Bearer wrong"}
    ).status_code == 401
    response = client.post(
        "/createTrigger", json=trigger_body, headers={"Authorization": "Bearer engine-token"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "success"


def test_create_trigger_example(client, trigger_body):
    response = client.post("/createTrigger", json=trigger_body)

    assert response.status_code == 200
    assert response.json() == {
        "status": "success",
        "result": {"url": "https://host/gcp/webhooks/u1/a1", "id": "snapmaster-a1-t1"},
    }


def test_create_then_delete_trigger(client, backend, trigger_body):
    created = client.post("/createTrigger", json=trigger_body).json()
    again = client.post("/createTrigger", json=trigger_body).json()
    assert again["result"]["id"] == created["result"]["id"]

    trigger_body["triggerData"] = created["result"]
    deleted = client.post("/deleteTrigger", json=trigger_body).json()

    assert deleted["status"] == "success"
    assert backend.subscriptions == {}


def test_invoke_action_missing_action(client, key_json):
    body = {"activeSnapId": "a1", "param": {"project": "p1", "gcp:projects": {"key": key_json}}}

    response = client.post("/invokeAction", json=body)

    assert response.json() == {"status": "error", "message": 'missing required parameter "action"'}


def test_invoke_action_runs_script(client, settings, key_json):
    script = settings.actions_dir / "build.sh"
    script.write_text('#!/bin/sh\necho "image=$SM_IMAGE"\n')
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    body = {
        "activeSnapId": "a1",
        "param": {"action": "build", "project": "p1", "image": "web", "gcp:projects": {"key": key_json}},
    }

    response = client.post("/invokeAction", json=body)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["result"]["stdout"].strip() == "image=web"


def test_webhook_without_authorization_is_rejected(client, engine, verifier):
    response = client.post("/gcp/webhooks/u1/a1", json=push_body({"x": 1}))

    assert response.status_code == 401
    assert verifier.seen == []
    assert engine.calls == []


def test_webhook_with_malformed_authorization_is_rejected(client, engine, verifier):
    response = client.post(
        "/gcp/webhooks/u1/a1", json=push_body({"x": 1}), headers={"Authorization": "Token good-token"}
    )

    assert response.status_code == 401
    assert verifier.seen == []
    assert engine.calls == []


def test_webhook_with_invalid_token_is_rejected(client, engine, verifier):
    response = client.post(
        "/gcp/webhooks/u1/a1", json=push_body({"x": 1}), headers={"Authorization": "Bearer forged"}
    )

    assert response.status_code == 401
    assert verifier.seen == ["forged"]
    assert engine.calls == []


def test_webhook_dispatches_to_engine(client, engine, verifier):
    response = client.post(
        "/gcp/webhooks/u1/a1", json=push_body({"x": 1}), headers={"Authorization": "Bearer good-token"}
    )

    assert response.status_code == 200
    assert response.json() == {"status": "accepted"}
    assert verifier.audiences == ["https://host/gcp/webhooks/u1/a1"]
    # TestClient runs background tasks before returning
    assert len(engine.calls) == 1
    user_id, active_snap_id, event, payload = engine.calls[0]
    assert (user_id, active_snap_id, event) == ("u1", "a1", "pubsub")
    assert payload["data"] == {"x": 1}
    assert payload["messageId"] == "m1"


def test_webhook_bad_body_is_500(client, engine):
    response = client.post(
        "/gcp/webhooks/u1/a1",
        content=b"not json",
        headers={"Authorization": "Bearer good-token", "content-type": "application/json"},
    )

    assert response.status_code == 500
    assert engine.calls == []


def test_webhook_engine_failure_still_acknowledges(settings, backend, verifier):
    engine = FakeEngine(response={})
    app = create_app(settings, backend=backend, token_verifier=verifier, auth0=FakeAuth0(), engine=engine)
    client = TestClient(app)

    response = client.post(
        "/gcp/webhooks/u1/a1", json=push_body({"x": 1}), headers={"Authorization": "Bearer good-token"}
    )

    assert response.status_code == 200
    assert len(engine.calls) == 1


def test_webhook_uses_configured_push_audience(settings, backend, verifier, engine):
    settings = dataclasses.replace(settings, push_audience="https://push.audience.test")
    app = create_app(settings, backend=backend, token_verifier=verifier, auth0=FakeAuth0(), engine=engine)

    TestClient(app).post(
        "/gcp/webhooks/u1/a1", json=push_body({"x": 1}), headers={"Authorization": "Bearer good-token"}
    )

    assert verifier.audiences == ["https://push.audience.test"]


def test_create_trigger_wrong_typed_field(client, backend, trigger_body):
    trigger_body["activeSnapId"] = 42

    response = client.post("/createTrigger", json=trigger_body)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "error"
    assert data["message"] == 'invalid field "activeSnapId" in request body'
    assert data["detail"]["errors"][0]["loc"] == ["body", "activeSnapId"]
    assert backend.calls == []


def test_invoke_action_param_must_be_an_object(client):
    response = client.post("/invokeAction", json={"activeSnapId": "a1", "param": "build"})

    assert response.status_code == 200
    assert response.json()["status"] == "error"
    assert response.json()["message"] == 'invalid field "param" in request body'


def test_invalid_json_body_is_an_error_value(client):
    response = client.post(
        "/deleteTrigger", content=b"{not json", headers={"content-type": "application/json"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "error"
    assert response.json()["message"] == "request body is not valid JSON"
