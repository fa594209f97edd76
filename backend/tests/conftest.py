"""Shared test fixtures and configuration for backend tests."""
from typing import Any, List

import jwt
import pytest
from fastapi.testclient import TestClient

from parley.chat.message_router import set_message_router
from parley.config import get_config, reset_config
from parley.main import app
from parley.messages.memory_store import InMemoryMessageStore
from parley.messages.service import set_message_store


def make_token(username: str, user_id: str, secret: str = None) -> str:
    """Sign a token the way the external login service would."""
    jwt_cfg = get_config().secrets.jwt
    return jwt.encode(
        {"username": username, "userId": user_id},
        secret or jwt_cfg.secret_key,
        algorithm=jwt_cfg.algorithm,
    )


class FakeWebSocket:
    """Minimal stand-in for fastapi.WebSocket that records outbound frames."""

    def __init__(self, fail_sends: bool = False) -> None:
        self.sent: List[dict] = []
        self.accepted = False
        self.fail_sends = fail_sends

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def events(self, event_type: str) -> List[Any]:
        return [f["data"] for f in self.sent if f["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture(autouse=True)
def fresh_chat_state():
    """Give every test its own in-memory store and router."""
    reset_config()
    set_message_store(InMemoryMessageStore())
    set_message_router(None)
    yield
    set_message_router(None)
    set_message_store(None)


@pytest.fixture
def api_client():
    """Provide a TestClient with the app lifespan running.

    All WebSocket sessions opened from this client share one event loop.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def token_for():
    """Factory fixture: token_for("alice", "u-alice") -> signed token."""
    return make_token


@pytest.fixture
def fake_ws():
    """Factory fixture producing FakeWebSocket instances."""
    return FakeWebSocket
