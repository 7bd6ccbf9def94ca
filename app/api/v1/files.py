"""
File endpoints.
Single-object upload, download and delete routed through the storage
manager.
"""

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse, Response

from app.config import get_settings
from app.core.exceptions import PayloadTooLargeException
from app.dependencies import Manager
from app.schemas.storage import UploadResult
from app.storage.base import basename, guess_content_type, normalize_path

router = APIRouter()
settings = get_settings()


def _target_path(path: str | None, filename: str | None) -> str:
    """Destination path; a folder path (or none) gets the upload's file name appended."""
    name = filename or "upload"
    if not path:
        return normalize_path(name)
    if path.endswith("/"):
        return normalize_path(f"{path}{name}")
    return normalize_path(path)


@router.post("", response_model=UploadResult, status_code=201)
async def upload_file(
    manager: Manager,
    file: UploadFile = File(..., description="File to store"),
    path: str | None = Form(default=None, description="Destination path, or a folder ending in /"),
    sourceId: int | None = Form(default=None, description="Target storage source"),
    placement: bool = Form(default=False, description="Let the placement policy choose the source"),
):
    """
    Upload a file.

    Targeting, in order of precedence:
    - ``sourceId``: that storage source
    - ``placement=true``: the source chosen by size and content type
    - otherwise the highest-priority available source

    A failed upload is reported with ``success: false`` and status 502.
    """
    if file.size is not None and file.size > settings.MAX_UPLOAD_SIZE:
        raise PayloadTooLargeException(settings.MAX_UPLOAD_SIZE)

    # Bounded read for parts whose size was not reported
    content = await file.read(settings.MAX_UPLOAD_SIZE + 1)
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise PayloadTooLargeException(settings.MAX_UPLOAD_SIZE)

    target = _target_path(path, file.filename)
    content_type = file.content_type or guess_content_type(target)

    if sourceId is not None:
        result = await manager.upload_to(sourceId, content, target, content_type)
    elif placement:
        result = await manager.upload_placed(content, target, content_type)
    else:
        result = await manager.upload(content, target, content_type)

    if not result.success:
        return JSONResponse(
            status_code=502,
            content=result.model_dump(by_alias=True, mode="json"),
        )
    return result


@router.get("/download")
async def download_file(
    manager: Manager,
    path: str = Query(..., min_length=1, description="Object path"),
    sourceId: int | None = Query(default=None, description="Storage source holding the object"),
):
    """Download an object from one storage source (default: the highest-priority one)."""
    data = await manager.download(path, source_id=sourceId)
    return Response(
        content=data,
        media_type=guess_content_type(path),
        headers={"Content-Disposition": f'attachment; filename="{basename(path)}"'},
    )


@router.delete("")
async def delete_file(
    manager: Manager,
    path: str = Query(..., min_length=1, description="Object path"),
    sourceId: int | None = Query(default=None, description="Storage source holding the object"),
    size: int | None = Query(default=None, ge=0, description="Recorded object size in bytes"),
):
    """
    Delete an object and release its bytes from the quota ledger.

    ``deleted`` is false when the object did not exist.
    """
    deleted = await manager.delete(path, source_id=sourceId, size=size)
    return {"path": normalize_path(path), "sourceId": sourceId, "deleted": deleted}
