"""Remote file browsing and editing endpoints."""

from __future__ import annotations

import posixpath

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile

from hostpilot.auth import require_api_key
from hostpilot.deps import get_file_bridge, get_server
from hostpilot.models.files import (
    DirectoryListing,
    FileContent,
    FileOperationResponse,
    FileStat,
    FileWriteRequest,
    MkdirRequest,
    MultiUploadResponse,
    RenameRequest,
    SearchResponse,
    UploadResponse,
)
from hostpilot.models.servers import ServerRecord
from hostpilot.services.file_bridge import FileBridge

router = APIRouter(
    prefix="/servers/{server_id}/files",
    tags=["files"],
    dependencies=[Depends(require_api_key)],
)


@router.get("", response_model=DirectoryListing)
async def list_files(
    path: str = Query("/", min_length=1),
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> DirectoryListing:
    items = await files.list_directory(server.credential(), path)
    return DirectoryListing(path=path, items=items)


@router.get("/read", response_model=FileContent)
async def read_file(
    path: str = Query(..., min_length=1),
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> FileContent:
    content = await files.read_file(server.credential(), path)
    return FileContent(path=path, content=content)


@router.put("/write", response_model=FileOperationResponse)
async def write_file(
    req: FileWriteRequest,
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> FileOperationResponse:
    await files.write_file(server.credential(), req.path, req.content)
    return FileOperationResponse(path=req.path)


@router.get("/stats", response_model=FileStat)
async def file_stats(
    path: str = Query(..., min_length=1),
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> FileStat:
    return await files.stat(server.credential(), path)


@router.get("/search", response_model=SearchResponse)
async def search_files(
    q: str = Query(..., min_length=1),
    path: str = Query("/", min_length=1),
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> SearchResponse:
    return await files.search(server.credential(), q, path)


@router.post("/mkdir", response_model=FileOperationResponse)
async def make_directory(
    req: MkdirRequest,
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> FileOperationResponse:
    await files.mkdir(server.credential(), req.path)
    return FileOperationResponse(path=req.path)


@router.delete("", response_model=FileOperationResponse)
async def delete_path(
    path: str = Query(..., min_length=1),
    is_directory: bool = False,
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> FileOperationResponse:
    await files.delete(server.credential(), path, is_directory=is_directory)
    return FileOperationResponse(path=path)


@router.post("/rename", response_model=FileOperationResponse)
async def rename_path(
    req: RenameRequest,
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> FileOperationResponse:
    await files.rename(server.credential(), req.old_path, req.new_path)
    return FileOperationResponse(path=req.old_path, new_path=req.new_path)


# ── transfer ──────────────────────────────────────────────────────────────


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    path: str = Form(..., min_length=1),
    file: UploadFile = File(...),
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> UploadResponse:
    data = await file.read()
    size = await files.upload(server.credential(), path, data)
    return UploadResponse(path=path, filename=file.filename or posixpath.basename(path), size=size)


@router.post("/upload-multiple", response_model=MultiUploadResponse)
async def upload_files(
    base_path: str = Form(""),
    files: list[UploadFile] = File(...),
    server: ServerRecord = Depends(get_server),
    bridge: FileBridge = Depends(get_file_bridge),
) -> MultiUploadResponse:
    batch = [(f.filename or "", await f.read()) for f in files]
    return await bridge.upload_many(server.credential(), base_path, batch)


@router.get("/download")
async def download_file(
    path: str = Query(..., min_length=1),
    server: ServerRecord = Depends(get_server),
    files: FileBridge = Depends(get_file_bridge),
) -> Response:
    data = await files.download(server.credential(), path)
    name = posixpath.basename(path.rstrip("/")) or "download"
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{name}"'},
    )
