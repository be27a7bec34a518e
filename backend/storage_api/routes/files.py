"""Files API routes."""
from typing import Optional
from fastapi import APIRouter, Depends, Response, UploadFile, File as FastAPIFile
from fastapi.responses import FileResponse

from storage_api.auth import Principal, get_current_user
from storage_api.context import StorageContext, get_storage
from storage_api.errors import MissingUpload
from storage_api.schemas.file import FileDeleteResponse, FileResponse as FileResponseSchema
from storage_api.services.blob_store import check_logical_name

router = APIRouter(prefix="/api/files", tags=["files"])


async def _read_chunks(file: UploadFile, chunk_size: int):
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


@router.get("", response_model=list[FileResponseSchema])
async def list_files(
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
):
    """List the caller's files."""
    return await storage.files.list_files(user.id)


@router.post("/upload", response_model=FileResponseSchema, status_code=201)
async def upload_file(
    response: Response,
    file: Optional[UploadFile] = FastAPIFile(None),
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
):
    """Upload a file. 201 for a new name, 200 when an existing file is replaced."""
    if file is None or not file.filename:
        raise MissingUpload()
    check_logical_name(file.filename)

    settings = storage.settings
    staged = await storage.blob_store.stage(
        _read_chunks(file, settings.UPLOAD_CHUNK_BYTES),
        max_bytes=settings.MAX_UPLOAD_BYTES,
    )
    result = await storage.files.upload(user.id, file.filename, staged)
    if not result.created:
        response.status_code = 200
    return result.record


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
):
    """Download a file by ID."""
    handle = await storage.files.download(user.id, file_id)
    return FileResponse(
        path=handle.path,
        filename=handle.record.logical_name,
        media_type="application/octet-stream",
    )


@router.delete("/{file_id}", response_model=FileDeleteResponse)
async def delete_file(
    file_id: str,
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
):
    """Delete a file and its record."""
    await storage.files.delete(user.id, file_id)
    return {"deleted": True, "id": file_id}
