from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from apps.filesystem.tristate import KEEP, Change, SetTo, TriState
from apps.storage.schema import StorageConfig

DEFAULT_URL_TTL = 3600
DEFAULT_BLOB_GRACE_PERIOD = 86400


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


class Config(CamelModel):
    """Client supplied configuration, persisted for the background jobs."""

    storage: StorageConfig
    # seconds
    upload_url_ttl: Optional[int] = None
    download_url_ttl: Optional[int] = None
    blob_grace_period: Optional[int] = None


class FileAttributes(CamelModel):
    expires_at: Optional[datetime] = None


class FileMetadata(CamelModel):
    path: str
    blob_id: str
    content_type: str
    size: int
    attributes: Optional[FileAttributes] = None


class Page(CamelModel):
    page: List[FileMetadata]
    continue_cursor: str
    is_done: bool


class PaginationOpts(CamelModel):
    num_items: int = Field(100, ge=1, le=1000)
    cursor: Optional[str] = None


_datetime = TypeAdapter(datetime)
_blob_id = TypeAdapter(str)


def _parse_datetime_change(change: Change) -> Change:
    if isinstance(change, SetTo):
        return SetTo(_datetime.validate_python(change.value))
    return change


DatetimeChange = Annotated[TriState, AfterValidator(_parse_datetime_change)]


def _parse_blob_id_change(change: Change) -> Change:
    if isinstance(change, SetTo):
        return SetTo(_blob_id.validate_python(change.value))
    return change


BlobIdChange = Annotated[TriState, AfterValidator(_parse_blob_id_change)]


class Dest(CamelModel):
    """Destination of a move or copy.

    basis omitted: overwrite whatever is at path
    basis null: path must be empty
    basis "<blob id>": path must currently hold that blob
    """

    path: str
    basis: BlobIdChange = KEEP


class SetAttributesInput(CamelModel):
    # omitted: keep, null: clear, value: set
    expires_at: DatetimeChange = KEEP


class MoveOp(CamelModel):
    op: Literal["move"] = "move"
    source: FileMetadata
    dest: Dest


class CopyOp(CamelModel):
    op: Literal["copy"] = "copy"
    source: FileMetadata
    dest: Dest


class DeleteOp(CamelModel):
    op: Literal["delete"] = "delete"
    source: FileMetadata


class SetAttributesOp(CamelModel):
    op: Literal["setAttributes"] = "setAttributes"
    source: FileMetadata
    attributes: SetAttributesInput


Op = Annotated[
    Union[MoveOp, CopyOp, DeleteOp, SetAttributesOp],
    Field(discriminator="op"),
]


class FileCommit(CamelModel):
    path: str
    blob_id: str
    # omitted: overwrite, null: must not exist, "<blob id>": must match
    basis: BlobIdChange = KEEP
    # replaces the attributes of an existing file wholesale
    attributes: Optional[FileAttributes] = None


class CommitRequest(CamelModel):
    files: List[FileCommit]


class TransactRequest(CamelModel):
    ops: List[Op]


class DeleteRequest(CamelModel):
    path: str


class UploadTicket(CamelModel):
    url: str
    blob_id: str


class UploadResult(CamelModel):
    blob_id: str


class FileContents(CamelModel):
    data: bytes
    content_type: str
    size: int
