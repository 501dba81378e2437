"""File System Bridge request and response models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, computed_field


class FileEntry(BaseModel):
    """One row of a directory listing."""

    name: str
    path: str
    is_directory: bool
    size: int = 0
    permissions: str = ""
    modified: datetime


class DirectoryListing(BaseModel):
    path: str
    items: list[FileEntry]


class FileStat(BaseModel):
    path: str
    size: int
    modified: Optional[datetime] = None
    is_directory: bool
    is_file: bool
    permissions: str = ""


class FileContent(BaseModel):
    path: str
    content: str


class SearchResult(BaseModel):
    name: str
    path: str
    directory: str
    is_directory: bool
    is_file: bool


class SearchResponse(BaseModel):
    query: str
    path: str
    results: list[SearchResult]


class FileWriteRequest(BaseModel):
    path: str = Field(min_length=1)
    content: str = ""


class MkdirRequest(BaseModel):
    path: str = Field(min_length=1)


class RenameRequest(BaseModel):
    old_path: str = Field(min_length=1)
    new_path: str = Field(min_length=1)


class FileOperationResponse(BaseModel):
    success: bool = True
    path: str
    new_path: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool = True
    path: str
    filename: str
    size: int


class UploadedFile(BaseModel):
    path: str
    size: int
    success: bool = True


class UploadFailure(BaseModel):
    filename: str
    error: str


class MultiUploadResponse(BaseModel):
    """Folder upload outcome; per-file failures do not fail the request."""

    success: bool = True
    results: list[UploadedFile] = Field(default_factory=list)
    errors: list[UploadFailure] = Field(default_factory=list)

    @computed_field
    @property
    def uploaded(self) -> int:
        return len(self.results)

    @computed_field
    @property
    def failed(self) -> int:
        return len(self.errors)
