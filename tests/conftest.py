"""Shared fixtures: settings, credentials, and in-memory fakes for the
Pub/Sub backend, token verifier and engine."""

from __future__ import annotations

import json

import pytest

from gcp_provider.config import Settings
from gcp_provider.pubsub import BackendResult, Outcome

KEY_INFO = {
    "type": "service_account",
    "project_id": "p1",
    "private_key": "x",
    "client_email": "e@p.iam",
}


class FakePubSubBackend:
    """In-memory Pub/Sub admin API that records every call."""

    def __init__(self):
        self.topics: set[str] = set()
        self.subscriptions: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_topic = False
        self.fail_subscription = False
        self.timeout_subscription = False

    async def create_topic(self, credentials, name):
        self.calls.append(("create_topic", name))
        if self.fail_topic:
            return BackendResult.failed("permission denied")
        handle = f"projects/{credentials.project_id}/topics/{name}"
        if handle in self.topics:
            return BackendResult(Outcome.ALREADY_EXISTS, handle=handle)
        self.topics.add(handle)
        return BackendResult(Outcome.CREATED, handle=handle)

    async def create_subscription(self, credentials, topic, name, endpoint=None, service_account_email=None):
        self.calls.append(("create_subscription", topic, name, endpoint, service_account_email))
        if self.timeout_subscription:
            return BackendResult.failed("create_subscription timed out", timed_out=True)
        if self.fail_subscription:
            return BackendResult.failed("quota exceeded")
        handle = f"projects/{credentials.project_id}/subscriptions/{name}"
        if handle in self.subscriptions:
            return BackendResult(Outcome.ALREADY_EXISTS, handle=handle)
        self.subscriptions[handle] = {"topic": topic, "endpoint": endpoint}
        return BackendResult(Outcome.CREATED, handle=handle)

    async def delete_subscription(self, credentials, name):
        self.calls.append(("delete_subscription", name))
        handle = f"projects/{credentials.project_id}/subscriptions/{name}"
        if handle not in self.subscriptions:
            return BackendResult.failed(f"not found: {handle}")
        del self.subscriptions[handle]
        return BackendResult(Outcome.DELETED, handle=handle)


class FakeVerifier:
    def __init__(self, valid_tokens=("good-token",)):
        self.valid_tokens = set(valid_tokens)
        self.seen: list[str] = []
        self.audiences: list[str | None] = []

    async def verify(self, token, audience=None):
        self.seen.append(token)
        self.audiences.append(audience)
        return token in self.valid_tokens


class FakeEngine:
    def __init__(self, response=None):
        self.response = {"status": "success", "message": "ok"} if response is None else response
        self.calls: list[tuple] = []

    async def call_snap_engine(self, user_id, active_snap_id, event, payload):
        self.calls.append((user_id, active_snap_id, event, payload))
        return self.response


@pytest.fixture
def settings(tmp_path):
    return Settings(
        env="dev",
        configuration="dev",
        account="dev",
        port=8081,
        engine_url="https://engine.test",
        provider_url="https://host",
        auth0_domain="tenant.auth0.test",
        auth0_audience="https://api.snapmaster.test",
        auth0_client_id="client",
        auth0_client_secret="secret",
        actions_dir=tmp_path,
    )


@pytest.fixture
def key_json():
    return json.dumps(KEY_INFO)


@pytest.fixture
def backend():
    return FakePubSubBackend()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def trigger_body(key_json):
    return {
        "userId": "u1",
        "activeSnapId": "a1",
        "param": {
            "event": "pubsub",
            "topic": "t1",
            "project": "p1",
            "gcp:projects": {"key": key_json},
        },
    }
