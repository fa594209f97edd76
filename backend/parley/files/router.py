"""Attachment upload endpoints.

Endpoints:
    POST /api/upload: Store one multipart ``file``, return {url, name, size, type}
    GET /uploads/{upload_id}: Serve a stored upload under its original name
"""
import logging

import duckdb
from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from parley.config import get_config
from parley.errors import UploadTooLargeError

from .schemas import UploadResult
from .service import get_upload_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


def upload_url(request: Request, upload_id: str) -> str:
    """Public URL of an upload; ``server.public_url`` wins over the request host."""
    base = get_config().server.public_url or str(request.base_url)
    return f"{base.rstrip('/')}/uploads/{upload_id}"


@router.post("/api/upload", response_model=UploadResult)
async def upload_file(request: Request, file: UploadFile = File(...)) -> UploadResult:
    """Store a single attachment.

    Raises:
        HTTPException 413: If the file is over the configured size limit
        HTTPException 500: If the file cannot be written
    """
    content = await file.read()
    try:
        upload = get_upload_store().put(file.filename or "", content, file.content_type or "")
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=e.message)
    except (OSError, duckdb.Error) as e:
        logger.error(f"Upload failed: {e}")
        raise HTTPException(status_code=500, detail="Upload failed")

    return UploadResult(
        url=upload_url(request, upload.id),
        name=upload.name,
        size=upload.size,
        type=upload.mimetype,
    )


@router.get("/uploads/{upload_id}")
async def download_file(upload_id: str) -> FileResponse:
    store = get_upload_store()
    upload = store.lookup(upload_id)
    path = store.path_for(upload) if upload else None
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path=path, filename=upload.name, media_type=upload.mimetype)
