from typing import List

from pydantic import BaseModel, Field


class FileRecord(BaseModel):
    id: int
    name: str
    type: str
    size: str
    date: str
    path: str


class VaultSnapshot(BaseModel):
    files: List[FileRecord] = Field(default_factory=list)


class StorageInfo(BaseModel):
    used: str
    total: str
    percentage: float
