"""Identity model produced by connection authentication."""
from pydantic import BaseModel, Field


class Identity(BaseModel):
    """A verified user identity bound to a connection.

    Attributes:
        username: Unique, stable display name.
        userId: Stable, durable user identifier.
    """
    username: str = Field(..., min_length=1, description="Unique username")
    userId: str = Field(..., min_length=1, description="Durable user ID")

    model_config = {"frozen": True}
