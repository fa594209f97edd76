"""Connection authentication (identity binding boundary)."""

from .schemas import Identity
from .service import TokenVerifier, extract_token

__all__ = [
    "Identity",
    "TokenVerifier",
    "extract_token",
]
