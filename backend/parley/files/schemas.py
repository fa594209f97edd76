"""Pydantic schemas for chat attachment uploads.

The chat core never looks inside an upload. Messages carry only the
{url, name, type, size} tuple returned by the upload endpoint.
"""
from datetime import datetime

from pydantic import BaseModel, Field


class StoredUpload(BaseModel):
    """One upload as recorded in the metadata table."""
    id: str = Field(..., description="Opaque upload ID, also used in the URL")
    name: str = Field(..., description="Client-supplied filename (basename only)")
    blob: str = Field(..., description="Path of the bytes, relative to the upload dir")
    mimetype: str = Field(..., description="Declared MIME type")
    size: int = Field(..., description="Size in bytes")
    uploaded_at: datetime = Field(..., description="When the upload was stored (UTC)")


class UploadResult(BaseModel):
    """Upload response, shaped like a message attachment."""
    url: str = Field(..., description="Stable URL to fetch the file")
    name: str = Field(..., description="Original filename")
    size: int = Field(..., description="File size in bytes")
    type: str = Field(..., description="MIME type")
