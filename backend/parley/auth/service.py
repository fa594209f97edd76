"""JWT verification for WebSocket connections.

Tokens are issued elsewhere (login/registration is not part of this service).
A connection presents its token either as the ``token`` query parameter or as
an ``Authorization: Bearer <token>`` header; the claims must carry
``username`` and ``userId``.
"""
import logging
from typing import Optional

import jwt
from fastapi import WebSocket
from pydantic import ValidationError

from parley.config import AppSettings, get_config
from parley.errors import AuthRejectedError

from .schemas import Identity

logger = logging.getLogger(__name__)


class TokenVerifier:
    """Verifies signed tokens and turns their claims into an Identity."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Optional[AppSettings] = None) -> "TokenVerifier":
        settings = settings or get_config()
        return cls(
            secret_key=settings.secrets.jwt.secret_key,
            algorithm=settings.secrets.jwt.algorithm,
        )

    def verify(self, token: Optional[str]) -> Identity:
        """Decode a token into an Identity.

        Raises:
            AuthRejectedError: If the token is missing, invalid, expired,
                or lacks the identity claims.
        """
        if not token:
            raise AuthRejectedError("unauthorized")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            raise AuthRejectedError(f"invalid token: {e}") from e

        try:
            return Identity(username=payload.get("username"), userId=str(payload.get("userId", "")))
        except ValidationError as e:
            raise AuthRejectedError("token is missing identity claims") from e


def extract_token(websocket: WebSocket) -> Optional[str]:
    """Pull the bearer token from the query string or Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None
