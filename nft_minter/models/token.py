"""Token and metadata Pydantic models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class NFTMetadata(BaseModel):
    """JSON metadata document pinned alongside the image."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    image: str = Field(min_length=1)

    @field_validator("name", "description")
    @classmethod
    def not_whitespace(cls, v: str) -> str:
        """Validate that field is not only whitespace."""
        if not v.strip():
            raise ValueError("field cannot be only whitespace")
        return v


class NFTToken(BaseModel):
    """Denormalized record of a minted token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    token_id: str = Field(min_length=1)
    upload_status_id: Optional[str] = None
    metadata_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
