from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CatalogItemCreate(BaseModel):
    # OpenAI function names: letters, digits, underscores and dashes
    external_name: str = Field(min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9_-]+$")
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    output_schema: dict[str, Any] = Field(default_factory=dict)
    status: str = Field("active", pattern=r"^(active|deployed|testing|deprecated|disabled)$")


class CatalogItemResponse(BaseModel):
    id: str
    namespace: str
    external_name: str
    description: str
    input_schema: dict[str, Any]
    output_schema: dict[str, Any]
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
