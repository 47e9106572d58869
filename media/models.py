from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """
    Returned by POST /media. `object_ref` is the handle used by every
    other media endpoint.
    """
    object_ref: str
    internal_url: str
    public_url: str
    size: int
    content_type: str
    file_type: str  # image | video | other
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None  # landscape | portrait | square


class PresignResponse(BaseModel):
    url: str
    expires_at: datetime


class ImportItem(BaseModel):
    url: str
    filename: Optional[str] = None


class BulkImportRequest(BaseModel):
    urls: List[ImportItem] = Field(..., min_length=1)
    max_bytes: Optional[int] = Field(default=None, gt=0)


class ImportResultModel(BaseModel):
    url: str
    success: bool
    object_ref: Optional[str] = None
    filename: Optional[str] = None
    size: int = 0
    content_type: Optional[str] = None
    file_type: Optional[str] = None
    internal_url: Optional[str] = None
    public_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None
    error: Optional[str] = None


class BulkImportResponse(BaseModel):
    total: int
    success_count: int
    results: List[ImportResultModel]

