"""Tests for token verification and token extraction."""
import time
from unittest.mock import MagicMock

import jwt
import pytest

from parley.auth.service import TokenVerifier, extract_token
from parley.errors import AuthRejectedError

SECRET = "parley-test-secret-long-enough-for-hs256"


def sign(claims, secret=SECRET, algorithm="HS256"):
    return jwt.encode(claims, secret, algorithm=algorithm)


class TestTokenVerifier:
    def test_valid_token_yields_identity(self):
        identity = TokenVerifier(SECRET).verify(sign({"username": "alice", "userId": "u1"}))
        assert identity.username == "alice"
        assert identity.userId == "u1"

    def test_numeric_user_id_is_stringified(self):
        identity = TokenVerifier(SECRET).verify(sign({"username": "alice", "userId": 42}))
        assert identity.userId == "42"

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, token):
        with pytest.raises(AuthRejectedError) as exc_info:
            TokenVerifier(SECRET).verify(token)
        assert exc_info.value.message == "unauthorized"

    def test_wrong_secret(self):
        with pytest.raises(AuthRejectedError):
            TokenVerifier(SECRET).verify(sign({"username": "alice", "userId": "u1"}, secret="some-other-secret-long-enough-for-hs256"))

    def test_garbage_token(self):
        with pytest.raises(AuthRejectedError):
            TokenVerifier(SECRET).verify("not.a.jwt")

    def test_expired_token(self):
        token = sign({"username": "alice", "userId": "u1", "exp": int(time.time()) - 60})
        with pytest.raises(AuthRejectedError):
            TokenVerifier(SECRET).verify(token)

    @pytest.mark.parametrize("claims", [{"userId": "u1"}, {"username": "alice"}, {"username": "", "userId": "u1"}])
    def test_missing_identity_claims(self, claims):
        with pytest.raises(AuthRejectedError):
            TokenVerifier(SECRET).verify(sign(claims))

    def test_from_settings_uses_configured_secret(self, token_for):
        verifier = TokenVerifier.from_settings()
        assert verifier.verify(token_for("bob", "u2")).username == "bob"


class TestExtractToken:
    def _websocket(self, query=None, headers=None):
        websocket = MagicMock()
        websocket.query_params = query or {}
        websocket.headers = headers or {}
        return websocket

    def test_query_parameter(self):
        assert extract_token(self._websocket(query={"token": "abc"})) == "abc"

    def test_bearer_header(self):
        assert extract_token(self._websocket(headers={"authorization": "Bearer xyz"})) == "xyz"

    def test_query_wins_over_header(self):
        websocket = self._websocket(query={"token": "q"}, headers={"authorization": "Bearer h"})
        assert extract_token(websocket) == "q"

    def test_non_bearer_scheme_ignored(self):
        assert extract_token(self._websocket(headers={"authorization": "Basic dXNlcg=="})) is None

    def test_nothing_presented(self):
        assert extract_token(self._websocket()) is None
