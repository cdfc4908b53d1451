"""Apps Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class AppCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class AppUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: Literal["active", "inactive"] | None = None


class AppResponse(BaseModel):
    id: str
    name: str
    description: str | None
    api_key: str
    status: str
    created_at: str
    updated_at: str


class ApiKeyResponse(BaseModel):
    api_key: str
