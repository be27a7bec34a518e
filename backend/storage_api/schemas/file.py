"""File request/response schemas."""
import uuid
from datetime import datetime
from storage_api.schemas.base import CamelModel, CamelORMModel


class FileResponse(CamelORMModel):
    id: uuid.UUID
    owner_id: str
    logical_name: str
    size_bytes: int
    created_at: datetime
    updated_at: datetime


class FileDeleteResponse(CamelModel):
    deleted: bool = True
    id: str
