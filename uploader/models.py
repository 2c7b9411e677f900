"""Pydantic models for the upload and merge endpoints."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Serialized with camelCase keys, constructed with snake_case names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class ChunkUploadMeta(_WireModel):
    """Metadata sent alongside every chunk body."""
    index: int
    filename: str
    session_id: str
    total_chunks: int
    hash: str


class MergeRequest(_WireModel):
    """Request body for the merge endpoint."""
    filename: str
    session_id: str
    total_chunks: int
    total_size: int
