from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class S3StorageConfig(BaseModel):
    type: Literal["s3"] = "s3"
    endpoint: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=1)
    access_key: str = ""
    secret_key: str = ""
    region: Optional[str] = None
    virtual_host: bool = False


class BunnyStorageConfig(BaseModel):
    type: Literal["bunny"] = "bunny"
    api_key: str
    storage_zone_name: str
    # empty string is the Frankfurt default zone
    region: str = ""
    cdn_hostname: str
    # only set when the pull zone has token authentication enabled
    token_key: Optional[str] = None


class LocalStorageConfig(BaseModel):
    type: Literal["local"] = "local"
    path: str


class TestStorageConfig(BaseModel):
    """In-process memory store. Not for production use."""

    type: Literal["test"] = "test"


StorageConfig = Annotated[
    Union[S3StorageConfig, BunnyStorageConfig, LocalStorageConfig, TestStorageConfig],
    Field(discriminator="type"),
]


class BlobMetadata(BaseModel):
    content_length: int
    content_type: Optional[str] = None


class DeleteResult(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
